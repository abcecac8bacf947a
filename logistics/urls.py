from django.urls import path
from . import views

app_name = 'logistics'

urlpatterns = [
    # Заявки
    path('requests/', views.requests_collection, name='requests'),
    path('requests/performance/summary/', views.performance_summary, name='performance_summary'),
    path('requests/<int:pk>/', views.request_detail, name='request_detail'),
    path('requests/<int:pk>/cancel/', views.request_cancel, name='request_cancel'),
    path('requests/<int:pk>/performance/', views.request_performance, name='request_performance'),

    # Двофазне завершення доставки
    path('requests/<int:pk>/delivery/', views.request_delivery, name='request_delivery'),
    path('requests/<int:pk>/delivery/confirm/', views.confirm_delivery, name='confirm_delivery'),
    path('deliveries/stats/', views.delivery_stats, name='delivery_stats'),
    path('deliveries/<int:pk>/log/', views.request_delivery, name='delivery_log'),
    path('deliveries/<int:pk>/confirm/', views.confirm_delivery, name='delivery_confirm'),
]
