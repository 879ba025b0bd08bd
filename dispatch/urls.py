"""
Dispatch App URLs
"""

from django.urls import path

from . import views

urlpatterns = [
    path('snapshot/', views.snapshot, name='dispatch-snapshot'),
    path('deliveries/', views.submit_delivery, name='dispatch-submit-delivery'),
    path('deliveries/<str:delivery_id>/cancel/', views.cancel_delivery, name='dispatch-cancel-delivery'),
]
