from django.urls import path
from . import api

app_name = "jobs"

urlpatterns = [
    path("", api.ScheduledJobListView.as_view(), name="job_list"),
    path("<uuid:pk>/", api.ScheduledJobDetailView.as_view(), name="job_detail"),
    path("<uuid:pk>/reschedule/", api.ScheduledJobRescheduleView.as_view(), name="job_reschedule"),
    path("<uuid:pk>/cancel/", api.ScheduledJobCancelView.as_view(), name="job_cancel"),
]
