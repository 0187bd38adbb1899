"""Environment resolution.

Maps a deployment request (ref, trigger, optional explicit environment) to
an EnvironmentDecision. Apart from the authorization lookup for protected
overrides the resolver is a pure function of the request and the config.
"""

from __future__ import annotations

from loguru import logger

from src.app.runtime.config.config_data import ConfigData, EnvironmentConfig

from .errors import ConfigurationError
from .identity import PrincipalAuthorizer
from .matchers import first_match
from .models import (
    AUTO_ENVIRONMENT,
    UNKNOWN_ENVIRONMENT,
    DeploymentRequest,
    EnvironmentDecision,
    TriggerType,
)


class EnvironmentResolver:
    """Resolve deployment requests to target environments.

    Example:
        resolver = EnvironmentResolver(config, authorizer)
        decision = resolver.resolve(request)
        if decision.should_deploy:
            ...
    """

    def __init__(self, config: ConfigData, authorizer: PrincipalAuthorizer) -> None:
        self._config = config
        self._authorizer = authorizer

    def resolve(self, request: DeploymentRequest) -> EnvironmentDecision:
        """Resolve a request.

        Raises:
            ConfigurationError: The environment would deploy but has no cluster
                binding, or an explicitly requested environment is unknown
            AuthorizationError: A protected environment was requested outside
                its canonical trigger by an unauthorized actor
        """
        requested = request.requested_environment.strip() or AUTO_ENVIRONMENT
        if requested != AUTO_ENVIRONMENT:
            return self._resolve_explicit(request, requested)

        rule = first_match(
            self._config.ordered_rules(), request.ref, request.trigger_type
        )
        if rule is None:
            logger.info(
                f"No rule matches {request.ref} ({request.trigger_type.value}); skipping deploy"
            )
            return EnvironmentDecision(
                target_environment=UNKNOWN_ENVIRONMENT,
                should_deploy=False,
                reason=f"no rule matches {request.ref}",
            )

        env = self._config.environments[rule.environment]
        return self._decide(
            rule.environment,
            env,
            should_deploy=True,
            reason=f"{request.ref} matched {rule.describe()}",
            matched_rule=rule.describe(),
        )

    def _resolve_explicit(
        self, request: DeploymentRequest, name: str
    ) -> EnvironmentDecision:
        env = self._config.environment(name)
        if env is None:
            raise ConfigurationError(
                f"Requested environment '{name}' is not configured",
                details=f"Known environments: {', '.join(self._config.environments)}",
            )

        canonical = self._is_canonical(request, name, env)
        if canonical:
            return self._decide(
                name,
                env,
                should_deploy=True,
                reason=f"{request.ref} is a canonical {request.trigger_type.value} for {name}",
                matched_rule=canonical,
            )

        if env.protected:
            # Raises before any decision is produced, so should_deploy stays false
            self._authorizer.require(
                request.actor,
                f"deploy {request.ref} to protected environment '{name}'",
            )

        explicit = request.trigger_type is TriggerType.MANUAL or request.override_validation
        reason = (
            f"explicit request for {name} by {request.actor}"
            if explicit
            else f"{request.ref} is not a canonical ref for {name}"
        )
        return self._decide(name, env, should_deploy=explicit, reason=reason)

    def _is_canonical(
        self, request: DeploymentRequest, name: str, env: EnvironmentConfig
    ) -> str | None:
        if request.trigger_type not in env.canonical_triggers:
            return None
        rule = first_match(self._config.rules_for(name), request.ref, request.trigger_type)
        return rule.describe() if rule else None

    def _decide(
        self,
        name: str,
        env: EnvironmentConfig,
        *,
        should_deploy: bool,
        reason: str,
        matched_rule: str | None = None,
    ) -> EnvironmentDecision:
        if should_deploy and not env.cluster.is_configured:
            raise ConfigurationError(
                f"Environment '{name}' has no cluster binding",
                details=f"Set environments.{name}.cluster.name in the promotion config.",
            )

        return EnvironmentDecision(
            target_environment=name,
            should_deploy=should_deploy,
            cluster_binding=env.cluster.to_binding() if env.cluster.is_configured else None,
            protected=env.protected,
            reason=reason,
            matched_rule=matched_rule,
        )
