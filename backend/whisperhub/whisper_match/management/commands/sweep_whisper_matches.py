from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from whisperhub.whisper_match.services import get_gateway


class Command(BaseCommand):
    help = "Expire overdue whisper matches, delete old ended ones, drop stale waiting entries."

    def add_arguments(self, parser):
        parser.add_argument(
            "--stale-waiting-seconds",
            type=int,
            default=None,
            help="대기열에서 이 시간보다 오래 기다린 entry 제거 (기본: WAIT_TIMEOUT_SECONDS)",
        )

    def handle(self, *args, **options):
        gateway = get_gateway()
        now = timezone.now()

        stale_seconds = options.get("stale_waiting_seconds")
        if stale_seconds is None:
            stale_seconds = gateway.match_settings.wait_timeout_seconds
        stale_before = now - timedelta(seconds=stale_seconds) if stale_seconds else None

        result = gateway.sweep(now=now, stale_before=stale_before)
        self.stdout.write(
            self.style.SUCCESS(
                "✅ sweep done: expired={expired} deleted={deleted} staleWaiting={staleWaiting}".format(
                    **result
                )
            )
        )
