from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("django-rq/", include("django_rq.urls")),
    # provider tracking webhooks (delivered, bounced, ...)
    path("webhooks/email/", include("anymail.urls")),
    # admin email surface
    path("api/admin/emails/", include("mailer.urls")),
    path("api/admin/emails/scheduled-jobs/", include("jobs.urls")),
]
