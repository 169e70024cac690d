import os

from rest_framework import serializers

from services.agents.models import Agent

from .aggregation import GRANULARITIES, DAILY
from .models import CallRecord
from .rubric import SCORE_MAX, SCORE_MIN

MP3_CONTENT_TYPES = ("audio/mpeg", "audio/mp3")


class RubricScoreSerializer(serializers.Serializer):
    greeting_compliance = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)
    script_adherence = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)
    empathy_expression = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)
    resolution_confirmation = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)
    call_duration = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)
    overall_rating = serializers.FloatField(min_value=SCORE_MIN, max_value=SCORE_MAX)


class CallRecordSerializer(serializers.ModelSerializer):
    evaluation = RubricScoreSerializer(read_only=True, allow_null=True)
    agent_name = serializers.CharField(source="agent.name", read_only=True, default=None)

    class Meta:
        model = CallRecord
        fields = [
            "id",
            "file_name",
            "storage_url",
            "status",
            "transcription",
            "evaluation",
            "error",
            "agent",
            "agent_name",
            "created_at",
        ]
        read_only_fields = fields


class CallUploadSerializer(serializers.Serializer):
    """
    Multipart body for POST /api/calls/.
    """

    file = serializers.FileField()
    agent = serializers.PrimaryKeyRelatedField(
        queryset=Agent.objects.all(),
        required=False,
        allow_null=True,
    )

    def validate_file(self, value):
        content_type = getattr(value, "content_type", "") or ""
        _, ext = os.path.splitext(value.name or "")
        if content_type not in MP3_CONTENT_TYPES and ext.lower() != ".mp3":
            raise serializers.ValidationError("Please upload an MP3 audio file.")
        return value


class AssignAgentSerializer(serializers.Serializer):
    agent = serializers.PrimaryKeyRelatedField(queryset=Agent.objects.all())


class DashboardQuerySerializer(serializers.Serializer):
    granularity = serializers.ChoiceField(
        choices=GRANULARITIES,
        required=False,
        default=DAILY,
    )
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("date_from"), attrs.get("date_to")
        if start and end and start > end:
            raise serializers.ValidationError("date_from must not be after date_to.")
        return attrs


class SummarySerializer(serializers.Serializer):
    total_calls = serializers.IntegerField()
    overall_average_score = serializers.FloatField()


class TrendPointSerializer(serializers.Serializer):
    bucket_key = serializers.CharField()
    bucket_start = serializers.DateField()
    call_volume = serializers.IntegerField()
    average_score = serializers.FloatField()


class LeaderboardEntrySerializer(serializers.Serializer):
    agent_id = serializers.IntegerField()
    agent_name = serializers.CharField()
    total_calls = serializers.IntegerField()
    average_score = serializers.FloatField()


class DashboardSerializer(serializers.Serializer):
    summary = SummarySerializer()
    trends = TrendPointSerializer(many=True)
    leaderboard = LeaderboardEntrySerializer(many=True)
