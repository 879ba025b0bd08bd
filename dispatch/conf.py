"""
DISPATCH App - Runtime configuration

Collects the DISPATCH_* Django settings into one object handed to the
dispatch server at construction time.
"""

from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class DispatchSettings:
    stale_timeout: float = 300
    maintenance_interval: float = 60
    progress_interval: float = 10
    offer_stagger: float = 5.0
    optimize_delay: float = 2.0
    synthetic_deliveries: bool = True
    synthetic_batch: int = 3
    max_offers: int = 10
    archive_size: int = 200
    verify_tokens: bool = False

    @classmethod
    def from_django(cls) -> 'DispatchSettings':
        defaults = cls()
        return cls(
            stale_timeout=getattr(settings, 'DISPATCH_STALE_TIMEOUT', defaults.stale_timeout),
            maintenance_interval=getattr(settings, 'DISPATCH_MAINTENANCE_INTERVAL', defaults.maintenance_interval),
            progress_interval=getattr(settings, 'DISPATCH_PROGRESS_INTERVAL', defaults.progress_interval),
            offer_stagger=getattr(settings, 'DISPATCH_OFFER_STAGGER', defaults.offer_stagger),
            optimize_delay=getattr(settings, 'DISPATCH_OPTIMIZE_DELAY', defaults.optimize_delay),
            synthetic_deliveries=getattr(settings, 'DISPATCH_SYNTHETIC_DELIVERIES', defaults.synthetic_deliveries),
            synthetic_batch=getattr(settings, 'DISPATCH_SYNTHETIC_BATCH', defaults.synthetic_batch),
            max_offers=getattr(settings, 'DISPATCH_MAX_OFFERS', defaults.max_offers),
            archive_size=getattr(settings, 'DISPATCH_ARCHIVE_SIZE', defaults.archive_size),
            verify_tokens=getattr(settings, 'DISPATCH_VERIFY_TOKENS', defaults.verify_tokens),
        )
