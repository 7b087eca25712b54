"""
NyayaNet URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'NyayaNet Discussions API',
        'version': '1.0',
        'endpoints': {
            'discussions': '/api/discussions/',
            'search': '/api/discussions/search/',
            'discussion': '/api/discussions/<id>/',
            'replies': '/api/replies/<id>/',
            'upvotes': '/api/upvotes/toggle/',
            'bookmarks': '/api/bookmarks/toggle/',
            'auth': '/api/auth/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('discussions.urls')),
]
