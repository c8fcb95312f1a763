# whisperhub/whisper_match/models.py
import uuid

from django.conf import settings
from django.db import models


class WhisperMatch(models.Model):
    STATE_CHOICES = (
        ("ACTIVE", "ACTIVE"),
        ("EXPIRED", "EXPIRED"),
        ("LEFT", "LEFT"),
    )

    match_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)

    # 먼저 기다리던 사람이 user_a, 나중에 들어온 사람이 user_b
    user_a = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="whisper_match_a",
        on_delete=models.CASCADE,
    )
    user_b = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="whisper_match_b",
        on_delete=models.CASCADE,
    )

    state = models.CharField(
        max_length=10, choices=STATE_CHOICES, default="ACTIVE", db_index=True
    )
    matched_at = models.DateTimeField()
    expires_at = models.DateTimeField(db_index=True)
    ended_at = models.DateTimeField(null=True, blank=True)
    ended_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="+",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    def __str__(self):
        return f"{self.match_id} {self.state}"


class WhisperMatchMessage(models.Model):
    match = models.ForeignKey(
        WhisperMatch, related_name="messages", on_delete=models.CASCADE
    )
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="+", on_delete=models.CASCADE
    )
    content = models.TextField()
    sent_at = models.DateTimeField()
    seq = models.PositiveIntegerField()

    class Meta:
        ordering = ["seq"]
        constraints = [
            models.UniqueConstraint(
                fields=["match", "seq"], name="uniq_whisper_match_message_seq"
            )
        ]


class ActiveWhisperMatch(models.Model):
    """
    userId -> 진행중 match 포인터.
    user가 PK라서 한 사람이 ACTIVE 세션 두 개를 가질 수 없음 (conditional write 역할)
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        primary_key=True,
        related_name="active_whisper_match",
        on_delete=models.CASCADE,
    )
    match = models.ForeignKey(
        WhisperMatch, related_name="pointers", on_delete=models.CASCADE
    )
