"""
Django admin configuration for core models.
"""

from django.contrib import admin
from .models import CachedCollege, ConversionActivity


@admin.register(CachedCollege)
class CachedCollegeAdmin(admin.ModelAdmin):
    list_display = ['entity_id', '__str__', 'origin', 'pending_sync', 'version', 'updated_at']
    list_filter = ['origin', 'pending_sync']
    search_fields = ['entity_id']
    readonly_fields = ['version', 'created_at', 'updated_at']
    date_hierarchy = 'created_at'


@admin.register(ConversionActivity)
class ConversionActivityAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'lead_id', 'college_id', 'action']
    list_filter = ['action']
    search_fields = ['lead_id', 'college_id']
    readonly_fields = ['lead_id', 'college_id', 'action', 'details_json', 'created_at']
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        return False  # Written by the conversion service

    def has_change_permission(self, request, obj=None):
        return False
