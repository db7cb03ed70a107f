from rest_framework import exceptions
from rest_framework.response import Response
from rest_framework.views import APIView

from mailer.exceptions import NotFound

from . import scheduler
from .serializers import RescheduleSerializer, ScheduledEmailJobSerializer


class ScheduledJobListView(APIView):
    def get(self, request):
        items = scheduler.list_jobs(
            status=request.query_params.get("status") or None,
            take=request.query_params.get("take"),
        )
        return Response(ScheduledEmailJobSerializer(items, many=True).data)


class ScheduledJobDetailView(APIView):
    def get(self, request, pk):
        try:
            job = scheduler.get_job(pk)
        except NotFound:
            raise exceptions.NotFound()
        return Response(ScheduledEmailJobSerializer(job).data)


class ScheduledJobRescheduleView(APIView):
    def post(self, request, pk):
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            job = scheduler.reschedule_job(pk, serializer.validated_data["scheduled_for"])
        except NotFound:
            raise exceptions.NotFound()
        return Response({"message": "Rescheduled", "job": ScheduledEmailJobSerializer(job).data})


class ScheduledJobCancelView(APIView):
    def post(self, request, pk):
        try:
            job = scheduler.cancel_job(pk)
        except NotFound:
            raise exceptions.NotFound()
        return Response({"message": "Cancelled", "id": job.pk})
