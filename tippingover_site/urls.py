"""URL configuration for the tippingover_site project."""

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('', include('tippingover.urls')),
]
