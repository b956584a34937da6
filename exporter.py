#!/usr/bin/env python3
"""
Azure Key Vault Exporter
Periodically walks the Key Vaults of one or more Azure subscriptions and
exposes vault, key, secret and certificate metadata (status, expiry,
inventory) on a Prometheus /metrics endpoint.
"""
import sys
import argparse
from typing import List, Optional

from config.settings import Settings, load_settings
from keyvault_exporter.cloud.client import KeyVaultApiClient
from keyvault_exporter.cloud.credentials import CredentialProvider, get_cloud_environment
from keyvault_exporter.collector.builder import ObservationBuilder
from keyvault_exporter.collector.models import Subscription
from keyvault_exporter.collector.orchestrator import CollectionOrchestrator
from keyvault_exporter.collector.scheduler import Scheduler
from keyvault_exporter.collector.walker import ResourceWalker
from keyvault_exporter.common.correlation import set_component
from keyvault_exporter.common.exceptions import (
    ConfigurationError,
    CycleAbortedError,
    ExporterError,
    SubscriptionListError,
)
from keyvault_exporter.common.http_server import MetricsHTTPServer
from keyvault_exporter.common.logging_config import get_logger, setup_logging
from keyvault_exporter.common.retry import retry_on_azure_error
from keyvault_exporter.common.shutdown import ShutdownManager
from keyvault_exporter.monitoring import ExporterMetrics, MetricRegistry, build_family_specs

logger = get_logger("exporter")


class KeyVaultExporter:
    """
    Wires the collection engine, the HTTP server and shutdown handling.

    Args:
        cfg: Loaded settings
        api: Azure resource API client (``KeyVaultApiClient`` or a fake)
        credential_provider: Closed on shutdown when given
    """

    def __init__(
        self,
        cfg: Settings,
        api,
        credential_provider: Optional[CredentialProvider] = None
    ):
        self.cfg = cfg
        self.api = api
        self.credential_provider = credential_provider
        self._fixed_subscriptions: Optional[List[Subscription]] = None

        resource_tags = cfg.azure.resource_tags
        content_tags = cfg.keyvault.content_tag_names

        self.registry = MetricRegistry(build_family_specs(resource_tags, content_tags))
        self.metrics = ExporterMetrics(self.registry.registry)

        self.orchestrator = CollectionOrchestrator(
            walker=ResourceWalker(api, cfg.azure.resource_group),
            builder=ObservationBuilder(api, resource_tags, content_tags, self.metrics),
            registry=self.registry,
            subscription_source=self.cycle_subscriptions,
            filter_resolver=self.resolve_filter if cfg.keyvault.filter.strip() else None,
            concurrency=cfg.scrape.concurrency,
            cycle_timeout=cfg.scrape.cycle_timeout_seconds,
            metrics=self.metrics
        )
        self.scheduler = Scheduler(
            self.orchestrator,
            interval=cfg.scrape.interval_seconds,
            jitter=cfg.scrape.jitter_seconds,
            run_immediately=cfg.scrape.run_immediately,
            metrics=self.metrics
        )
        self.server = MetricsHTTPServer(self.registry, cfg.server.host, cfg.server.port)
        self.shutdown = ShutdownManager(timeout=cfg.scrape.cycle_timeout_seconds + 10)

        logger.info(
            f"KeyVaultExporter initialized: concurrency={cfg.scrape.concurrency}, "
            f"interval={cfg.scrape.interval_seconds}s, "
            f"resource_group={cfg.azure.resource_group or '*'}, "
            f"filter={'yes' if cfg.keyvault.filter.strip() else 'no'}"
        )

    # -- Subscriptions --------------------------------------------------------

    @retry_on_azure_error(max_attempts=4)
    def _fetch_configured(self) -> List[Subscription]:
        return [self.api.get_subscription(sid) for sid in self.cfg.azure.subscription_ids]

    @retry_on_azure_error(max_attempts=4)
    def _fetch_visible(self) -> List[Subscription]:
        return self.api.list_subscriptions()

    def bootstrap_subscriptions(self) -> List[Subscription]:
        """
        Resolve subscriptions once at startup.

        Configured subscription IDs are resolved here and reused by every
        cycle. Without configured IDs, cycles re-list visible subscriptions.

        Raises:
            SubscriptionListError: listing failed or nothing is visible
        """
        if self.cfg.azure.subscription_ids:
            subscriptions = self._fetch_configured()
            self._fixed_subscriptions = subscriptions
        else:
            subscriptions = self._fetch_visible()
            self._fixed_subscriptions = None

        if not subscriptions:
            raise SubscriptionListError("No Azure subscriptions visible to the credential")

        for sub in subscriptions:
            logger.info(
                f"Using subscription {sub.display_name or '-'}",
                extra={"subscription": sub.subscription_id}
            )
        return subscriptions

    def cycle_subscriptions(self) -> List[Subscription]:
        if self._fixed_subscriptions is not None:
            return list(self._fixed_subscriptions)
        return self.api.list_subscriptions()

    def resolve_filter(self, subscriptions) -> set:
        return self.api.resolve_filter(
            self.cfg.keyvault.filter,
            [sub.subscription_id for sub in subscriptions]
        )

    # -- Run modes ------------------------------------------------------------

    def run_once(self) -> int:
        """
        Run a single cycle and write the exposition to stdout.

        Returns:
            Process exit code
        """
        self.bootstrap_subscriptions()
        try:
            self.orchestrator.run_cycle()
        except CycleAbortedError:
            return 1

        body, _ = self.registry.render()
        sys.stdout.write(body.decode("utf-8"))
        sys.stdout.flush()
        return 0

    def run(self) -> None:
        """Serve until SIGINT/SIGTERM."""
        self.bootstrap_subscriptions()

        self.server.start()

        stop_timeout = self.cfg.scrape.cycle_timeout_seconds
        self.shutdown.register(
            lambda: self.scheduler.stop(timeout=stop_timeout),
            priority=10,
            name="scheduler"
        )
        self.shutdown.register(self.server.stop, priority=20, name="http-server")
        if self.credential_provider is not None:
            self.shutdown.register(
                self.credential_provider.close, priority=30, name="azure-credential"
            )

        self.shutdown.install_signal_handlers()
        self.scheduler.start()

        logger.info("Exporter running")
        self.shutdown.wait_for_shutdown()
        self.shutdown.initiate_shutdown()


def apply_overrides(cfg: Settings, args: argparse.Namespace) -> Settings:
    """Apply command line flags on top of environment settings."""
    if args.port is not None:
        cfg.server.port = args.port
    if args.interval is not None:
        if args.interval <= 0:
            raise ConfigurationError("--interval must be positive")
        cfg.scrape.interval_seconds = args.interval
    if args.concurrency is not None:
        if args.concurrency < 1:
            raise ConfigurationError("--concurrency must be at least 1")
        cfg.scrape.concurrency = args.concurrency
    if args.subscription:
        cfg.azure.subscription_id = " ".join(args.subscription)
    if args.resource_group is not None:
        cfg.azure.resource_group = args.resource_group
    if args.log_level is not None:
        cfg.logging.level = args.log_level
    return cfg


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Azure Key Vault Exporter - Prometheus metrics for vaults, keys, secrets and certificates"
    )
    parser.add_argument(
        "--port",
        type=int,
        help="HTTP port for /metrics (default: SERVER_PORT or 8080)"
    )
    parser.add_argument(
        "--interval",
        type=float,
        help="Seconds between collection cycles (default: SCRAPE_INTERVAL_SECONDS or 300)"
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Vaults collected in parallel (default: SCRAPE_CONCURRENCY or 10)"
    )
    parser.add_argument(
        "--subscription",
        action="append",
        help="Subscription ID to collect; repeatable (default: AZURE_SUBSCRIPTION_ID or all visible)"
    )
    parser.add_argument(
        "--resource-group",
        help="Only collect vaults of this resource group (default: AZURE_RESOURCE_GROUP)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single collection cycle, print the metrics and exit"
    )
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = apply_overrides(load_settings(), args)
        # --once writes metrics to stdout, so logs go to stderr
        setup_logging(
            cfg.logging.level,
            cfg.logging.format,
            stream=sys.stderr if args.once else None
        )
    except (ConfigurationError, ValueError) as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)

    set_component("exporter")

    provider = None
    try:
        environment = get_cloud_environment(cfg.azure.environment)
        provider = CredentialProvider(
            environment,
            tenant_id=cfg.azure.tenant_id,
            client_id=cfg.azure.client_id,
            client_secret=cfg.azure.client_secret
        )
        api = KeyVaultApiClient(
            provider.acquire(),
            environment,
            request_timeout=cfg.azure.request_timeout_seconds
        )

        exporter = KeyVaultExporter(cfg, api, credential_provider=provider)
        if args.once:
            code = exporter.run_once()
            provider.close()
            sys.exit(code)

        exporter.run()
    except ExporterError as e:
        logger.critical(f"Exporter failed: {e}")
        sys.exit(1)
    except OSError as e:
        logger.critical(f"Exporter failed to start: {e}")
        sys.exit(1)

    logger.info("Exporter terminated")
    sys.exit(0)


if __name__ == "__main__":
    main()
