from django.urls import path

from workdays.api import api

urlpatterns = [
    path("api/", api.urls),
]
