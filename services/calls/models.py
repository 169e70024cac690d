from django.conf import settings
from django.db import models

from services.agents.models import Agent


class CallRecord(models.Model):
    class Status(models.TextChoices):
        UPLOADED = "uploaded", "Uploaded"
        FETCHING = "fetching", "Fetching"
        TRANSCRIBING = "transcribing", "Transcribing"
        EVALUATING = "evaluating", "Evaluating"
        UPDATING = "updating", "Updating"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="uploaded_calls",
        null=True,
        blank=True,
    )

    # lookup only: removing an agent must never touch its calls
    agent = models.ForeignKey(
        Agent,
        on_delete=models.SET_NULL,
        related_name="calls",
        null=True,
        blank=True,
        db_constraint=False,
    )

    file_name = models.CharField(max_length=255)
    storage_key = models.CharField(max_length=512, blank=True)
    storage_url = models.URLField(max_length=1024, blank=True)

    status = models.CharField(
        max_length=32,
        choices=Status.choices,
        default=Status.UPLOADED,
    )

    transcription = models.TextField(blank=True)
    evaluation = models.JSONField(null=True, blank=True)
    error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Call #{self.id} {self.file_name} ({self.get_status_display()})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.COMPLETED, self.Status.FAILED)
