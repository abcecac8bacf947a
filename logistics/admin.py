from django.contrib import admin
from .models import TransportationRequest, Delivery, DriverRating


@admin.register(TransportationRequest)
class TransportationRequestAdmin(admin.ModelAdmin):
    list_display = ('request_number', 'origin', 'destination', 'pickup_at', 'truck_count', 'status', 'urgency_level', 'deleted_at')
    list_filter = ('status', 'urgency_level', 'truck_type', 'created_at')
    search_fields = ('request_number', 'origin', 'destination', 'created_by')
    readonly_fields = ('request_number', 'status', 'created_at', 'updated_at', 'deleted_at')
    ordering = ('-created_at',)

    # В адмінці показуємо і м'яко видалені заявки
    def get_queryset(self, request):
        return TransportationRequest.all_objects.all()


# Оцінки редагуються прямо на сторінці доставки
class DriverRatingInline(admin.TabularInline):
    model = DriverRating
    extra = 0
    raw_id_fields = ('driver',)
    readonly_fields = ('created_at',)


@admin.register(Delivery)
class DeliveryAdmin(admin.ModelAdmin):
    list_display = ('request', 'actual_pickup_at', 'actual_truck_count', 'invoice_amount', 'logged_by', 'logged_at')
    list_filter = ('logged_at',)
    search_fields = ('request__request_number', 'logged_by', 'notes')
    readonly_fields = ('logged_at', 'updated_at')
    inlines = [DriverRatingInline]


@admin.register(DriverRating)
class DriverRatingAdmin(admin.ModelAdmin):
    list_display = ('driver', 'delivery', 'punctuality', 'professionalism', 'overall', 'created_at')
    list_filter = ('overall', 'created_at')
    search_fields = ('driver__name', 'delivery__request__request_number', 'comments')
    readonly_fields = ('created_at', 'updated_at')
