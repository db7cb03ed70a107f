from django.urls import path
from . import api

app_name = "mailer"

urlpatterns = [
    path("campaigns/", api.CampaignListView.as_view(), name="campaign_list"),
    path("campaigns/<uuid:pk>/", api.CampaignDetailView.as_view(), name="campaign_detail"),
    path("campaigns/<uuid:pk>/cancel/", api.CampaignCancelView.as_view(), name="campaign_cancel"),
    path("queue/", api.QueueView.as_view(), name="queue"),
    path("queue/<uuid:pk>/", api.DeliveryDetailView.as_view(), name="delivery_detail"),
    path("queue/<uuid:pk>/cancel/", api.DeliveryCancelView.as_view(), name="delivery_cancel"),
    path("quota/", api.QuotaView.as_view(), name="quota"),
]
