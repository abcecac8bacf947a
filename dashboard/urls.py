from django.urls import path
from . import views

app_name = 'dashboard'

# Аналітика панелі керування (підключена як /api/dashboard/ у config/urls.py)
urlpatterns = [
    path('kpi/', views.kpi, name='kpi'),
    path('trends/', views.trends, name='trends'),
    path('insights/', views.insights, name='insights'),
    path('transporter-comparison/', views.transporter_comparison, name='transporter_comparison'),
    path('health/', views.health, name='health'),
]
