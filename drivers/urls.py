from django.urls import path
from . import views

app_name = 'drivers'

urlpatterns = [
    path('', views.drivers_collection, name='drivers'),
    path('recent/', views.recent_drivers, name='recent'),
    path('<int:pk>/', views.driver_detail, name='driver_detail'),
    path('<int:pk>/archive/', views.driver_archive, name='archive'),
    path('<int:pk>/ratings/', views.driver_ratings, name='ratings'),
    path('<int:pk>/insights/', views.driver_insights, name='insights'),
]
