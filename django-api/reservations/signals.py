"""Django signals for cache invalidation.

Ledger rows edited outside InventoryPool (admin, shell, fixtures) still
invalidate the availability cache for their category.
"""

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from reservations.models import InventoryUnit
from reservations.wiring import build_availability_cache


@receiver([post_save, post_delete], sender=InventoryUnit)
def invalidate_availability_cache(sender, instance, **kwargs):
    """Invalidate the cached availability when a ledger row is saved or deleted."""
    build_availability_cache().invalidate([instance.category])
