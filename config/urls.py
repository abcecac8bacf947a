from django.contrib import admin
from django.urls import path, include

from logistics import views as logistics_views

# Налаштування адмін-панелі (тексти, заголовки)
admin.site.site_header = 'Транспортна координація: адмін-панель'
admin.site.site_title = 'Транспортна координація'
admin.site.index_title = 'Управління системою'

# Основні маршрути проєкту
# Кожен path веде на view або включає urls іншого застосунку
urlpatterns = [
    path('admin/', admin.site.urls),                       # адмін-панель Django
    path('api/health/', logistics_views.health, name='api_health'),  # стан сервісу
    path('api/', include('logistics.urls')),               # заявки та доставки
    path('api/drivers/', include('drivers.urls')),         # водії та оцінки
    path('api/dashboard/', include('dashboard.urls')),     # KPI, тренди, підказки
]
