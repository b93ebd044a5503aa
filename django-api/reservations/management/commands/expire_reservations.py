"""Reject pending groups whose hold window has passed. Run from cron."""

import structlog
from django.core.management.base import BaseCommand

from reservations.wiring import build_orchestrator

logger = structlog.get_logger(__name__)


class Command(BaseCommand):
    help = "Reject pending groups past reserved_until and release their inventory."

    def add_arguments(self, parser):
        parser.add_argument(
            "--recalculate",
            action="store_true",
            help="Also recompute reserved counts from active reservations.",
        )

    def handle(self, *args, **options):
        orchestrator = build_orchestrator()
        expired = orchestrator.sweep_expired()
        for group in expired:
            self.stdout.write(f"expired {group.code}")
        logger.info("expiry_sweep_finished", expired=len(expired))
        if options["recalculate"]:
            corrections = orchestrator.recalculate_inventory()
            for category, delta in sorted(corrections.items()):
                self.stdout.write(f"corrected {category}: {delta:+d}")
        self.stdout.write(self.style.SUCCESS(f"{len(expired)} group(s) expired"))
