"""
URL configuration for core app.
"""

from django.urls import path
from . import views

app_name = 'core'

urlpatterns = [
    path('api/colleges/', views.college_collection, name='college_collection'),
    path('api/colleges/<str:college_id>/', views.college_detail, name='college_detail'),
    path('api/leads/<str:lead_id>/convert/', views.lead_convert, name='lead_convert'),
    path('api/leads/<str:lead_id>/status/', views.lead_status_changed, name='lead_status_changed'),
]
