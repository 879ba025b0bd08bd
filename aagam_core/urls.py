"""
AAGAM Dispatch Node URL Configuration
"""

from django.urls import path, include
from rest_framework.decorators import api_view
from rest_framework.response import Response

from dispatch.views import health_check


@api_view(['GET'])
def api_root(request):
    """API Root endpoint with available routes."""
    return Response({
        'name': 'AAGAM Dispatch API',
        'version': '1.0.0',
        'endpoints': {
            'snapshot': '/api/dispatch/snapshot/',
            'deliveries': '/api/dispatch/deliveries/',
            'cancel': '/api/dispatch/deliveries/<delivery_id>/cancel/',
        },
        'websocket': {
            'dispatch': '/ws/dispatch/',
        },
    })


urlpatterns = [
    path('health/', health_check, name='health'),
    path('api/', api_root, name='api-root'),
    path('api/dispatch/', include('dispatch.urls')),
]
