"""
URL configuration for analytics app.
"""

from django.urls import path
from . import views

app_name = 'analytics'

urlpatterns = [
    path('api/stats/', views.stats_api, name='stats_api'),
    path('api/conversions/', views.conversion_stats_api, name='conversion_stats_api'),
]
