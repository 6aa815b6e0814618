from django.contrib import admin

from apps.audit.models import AuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("action", "entity_type", "entity_id", "store", "actor", "created_at")
    list_filter = ("action", "entity_type")
    search_fields = ("entity_id", "action", "actor__username", "store__code")
    readonly_fields = ("store", "actor", "action", "entity_type", "entity_id", "payload", "created_at")
