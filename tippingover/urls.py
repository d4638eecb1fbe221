"""URL configuration for the tippingover app.

``app_name`` allows namespacing from the project URL configuration.
"""

from django.urls import path

from . import views

app_name = 'tippingover'

urlpatterns = [
    path('wiki/<path:title>', views.page, name='page'),
    path('api/tooltip/', views.tooltip_api, name='tooltip_api'),
]
