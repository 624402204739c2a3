"""
SocialFeed URL Configuration
"""
from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def api_root(request):
    """Root endpoint with API information."""
    return JsonResponse({
        'message': 'SocialFeed API Server',
        'version': '1.0',
        'endpoints': {
            'feed': '/api/feed/',
            'posts': '/api/posts/<id>/',
            'comments': '/api/posts/<id>/comments/',
            'react': '/api/posts/<id>/react/',
            'reactions': '/api/posts/<id>/reactions/',
            'share': '/api/posts/<id>/share/',
            'save': '/api/posts/<id>/save/',
            'auth': '/api/auth/',
        },
        'admin': '/admin/',
    })


urlpatterns = [
    path('', api_root, name='api-root'),
    path('admin/', admin.site.urls),
    path('api/', include('feed.urls')),
]
