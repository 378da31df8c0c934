"""
MediLink Tracker Entry Point

Opens the live tracking view for one emergency request in the terminal and
reprints it whenever the tracked record changes.
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from medilink.core.config import ConfigurationManager, ConfigurationError
from medilink.core.logging import initialize_logging, get_logger
from medilink.models.emergency import Coordinates
from medilink.services.tracking import (
    EmergencyAPIClient,
    EmergencyStateStore,
    GeolocationAcquirer,
    IPGeolocationLocator,
    PollingScheduler,
    TrackerController
)


def build_controller(config: ConfigurationManager, client: EmergencyAPIClient,
                     interval: Optional[float] = None, **kwargs) -> TrackerController:
    """Assemble a TrackerController from configuration"""
    store = EmergencyStateStore()
    scheduler = PollingScheduler(
        client,
        store,
        interval=interval or config.get_poll_interval(),
        failure_threshold=config.get_failure_threshold(),
        backoff_max=config.get_backoff_max()
    )

    locator = None
    if config.get('geolocation.enabled', True):
        locator = IPGeolocationLocator(config.get('geolocation.provider_url'))
    geolocator = GeolocationAcquirer(
        locator=locator,
        fallback=Coordinates.from_dict(config.get_fallback_location()),
        timeout=config.get('geolocation.timeout', 10)
    )

    return TrackerController(
        client,
        store=store,
        scheduler=scheduler,
        geolocator=geolocator,
        distance_unit=config.get('tracking.distance_unit', 'km'),
        **kwargs
    )


class TrackerApplication:
    """Terminal host for the emergency tracker"""

    def __init__(self, args: argparse.Namespace):
        self.args = args
        self.config_manager: Optional[ConfigurationManager] = None
        self.client: Optional[EmergencyAPIClient] = None
        self.controller: Optional[TrackerController] = None
        self.logger = None
        self.shutdown_event = asyncio.Event()

    def initialize(self):
        """Load configuration and logging"""
        self.config_manager = ConfigurationManager(self.args.config_dir)
        self.config_manager.load_config()
        if self.args.base_url:
            self.config_manager.set('api.base_url', self.args.base_url)

        initialize_logging(self.config_manager.config)
        self.logger = get_logger('main')
        self.logger.info(f"Backend: {self.config_manager.get_api_base_url()}")

    async def _confirm(self, prompt: str) -> bool:
        answer = await asyncio.get_running_loop().run_in_executor(None, input, f"{prompt} [y/N] ")
        return answer.strip().lower() in ('y', 'yes')

    def _print_view(self, record):
        print(self.controller.render(), flush=True)
        if record is not None and record.is_terminal:
            self.shutdown_event.set()

    def _signal_handler(self):
        self.logger.info("Shutdown signal received")
        self.shutdown_event.set()

    async def run(self) -> int:
        """Track until the emergency closes or the user interrupts"""
        self.initialize()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        self.client = EmergencyAPIClient(
            self.config_manager.get_api_base_url(),
            timeout=self.config_manager.get('api.timeout', 10),
            max_retries=self.config_manager.get('api.max_retries', 0)
        )
        self.controller = build_controller(
            self.config_manager,
            self.client,
            interval=self.args.interval,
            confirm=self._confirm,
            dialer=lambda uri: print(f"Dial {uri}"),
            on_close=self.shutdown_event.set
        )

        try:
            await self.controller.open(self.args.emergency_id)

            if self.args.cancel:
                if await self.controller.cancel():
                    print("Emergency request cancelled.")
                elif self.controller.last_error:
                    print(self.controller.last_error, file=sys.stderr)

            print(self.controller.render(), flush=True)
            if self.args.once or not self.controller.scheduler.is_active:
                return 0

            unsubscribe = self.controller.subscribe(self._print_view)
            try:
                await self.shutdown_event.wait()
            finally:
                unsubscribe()
            return 0
        finally:
            await self.controller.close()
            await self.client.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MediLink emergency tracker")
    parser.add_argument("emergency_id", help="Emergency request identifier, e.g. E-123")
    parser.add_argument("--config-dir", default="config", help="Directory holding default.yaml/config.yaml")
    parser.add_argument("--base-url", help="Override the backend base URL")
    parser.add_argument("--interval", type=float, help="Polling interval in seconds")
    parser.add_argument("--once", action="store_true", help="Print the view once and exit")
    parser.add_argument("--cancel", action="store_true", help="Cancel the emergency (asks for confirmation)")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    app = TrackerApplication(parse_args(argv))
    try:
        return await app.run()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2


def run():
    """Console script entry point"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nTracker interrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
