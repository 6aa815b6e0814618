from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    fieldsets = DjangoUserAdmin.fieldsets + (("Store staff", {"fields": ("display_name",)}),)
    list_display = DjangoUserAdmin.list_display + ("display_name",)
    search_fields = DjangoUserAdmin.search_fields + ("display_name",)
