from django.contrib import admin
from .models import Driver


@admin.register(Driver)
class DriverAdmin(admin.ModelAdmin):
    list_display = ('name', 'type', 'transport_company', 'employee_id', 'overall_rating', 'total_deliveries', 'is_archived')
    list_filter = ('type', 'is_archived', 'created_at')
    search_fields = ('name', 'transport_company', 'employee_id', 'license_number')
    readonly_fields = ('overall_rating', 'total_deliveries', 'last_delivery', 'created_at', 'updated_at')
    ordering = ('name',)
