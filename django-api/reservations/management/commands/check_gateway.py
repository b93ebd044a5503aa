"""Check gateway credentials and connectivity with a pre-registration."""

from django.core.management.base import BaseCommand, CommandError

from reservations.conf import ReservationSettings
from reservations.domain.errors import DomainError
from reservations.wiring import build_gateway


class Command(BaseCommand):
    help = "Open a gateway session to verify credentials. Nothing is charged."

    def handle(self, *args, **options):
        config = ReservationSettings.from_django()
        gateway = build_gateway(config)
        if gateway is None:
            raise CommandError("Gateway is not configured (RESERVATIONS['GATEWAY'])")
        environment = "live" if config.gateway.live else "test"
        self.stdout.write(f"Gateway {config.gateway.base_url} ({environment})")
        try:
            session = gateway.check_connection()
        except DomainError as exc:
            raise CommandError(f"Gateway check failed: {exc.message}") from exc
        self.stdout.write(self.style.SUCCESS(f"Connected, control {session.control}"))
