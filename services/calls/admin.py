from django.contrib import admin

from .models import CallRecord


@admin.register(CallRecord)
class CallRecordAdmin(admin.ModelAdmin):
    list_display = ("id", "file_name", "agent", "uploaded_by", "status", "created_at")
    list_filter = ("status", "agent", "created_at")
    search_fields = ("file_name", "error", "uploaded_by__username", "agent__name")
    readonly_fields = ("storage_key", "storage_url", "created_at")
