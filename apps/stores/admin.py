from django.contrib import admin

from apps.stores.models import DocumentSequence, Store, StoreMember


class StoreMemberInline(admin.TabularInline):
    model = StoreMember
    extra = 0
    autocomplete_fields = ("user",)


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ("name", "code", "currency", "owner", "is_active", "created_at")
    list_filter = ("is_active", "currency")
    search_fields = ("name", "code", "owner__username")
    autocomplete_fields = ("owner",)
    inlines = [StoreMemberInline]


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(admin.ModelAdmin):
    list_display = ("store", "prefix", "period", "last_value")
    list_filter = ("prefix",)
    search_fields = ("store__code",)
    readonly_fields = ("store", "prefix", "period", "last_value")
