import uuid

import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from apps.billing.models import BillingJob
from apps.billing.queue import BillingJobQueue


@pytest.fixture
def failed_job(db):
    queue = BillingJobQueue()
    job = queue.enqueue(uuid.uuid4())
    [claimed] = queue.claim_batch()
    queue.fail(claimed, BillingJob.Outcome.RETRIES_EXHAUSTED, "provider down")
    job.refresh_from_db()
    return job


@pytest.mark.django_db
def test_operator_can_requeue_failed_job(api_client, failed_job):
    response = api_client.post(reverse("billing-job-retry", args=[failed_job.pk]))

    assert response.status_code == status.HTTP_200_OK, response.data
    failed_job.refresh_from_db()
    assert failed_job.status == BillingJob.Status.QUEUED
    assert failed_job.attempt_count == 0
    assert failed_job.outcome == ""


@pytest.mark.django_db
def test_only_failed_jobs_can_be_requeued(api_client):
    job = BillingJobQueue().enqueue(uuid.uuid4())

    response = api_client.post(reverse("billing-job-retry", args=[job.pk]))

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.data["code"] == "invalid_transition"


@pytest.mark.django_db
def test_billing_jobs_are_staff_only(failed_job):
    client = APIClient()
    client.force_authenticate(get_user_model().objects.create_user(username="guest", password="GuestPass123"))

    response = client.get(reverse("billing-job-list"))

    assert response.status_code == status.HTTP_403_FORBIDDEN
