"""
vendor_billing/blueprints/jobs/routes.py

Jobs: billable work a vendor submits before billing.

Vendors create/edit/delete their own PENDING jobs; ADMIN and attached users
may only view them.
"""

from __future__ import annotations

from flask import Blueprint

from ...enums import JobStatus
from ...extensions import db
from ...lifecycle import create_job, delete_job, update_job
from ...models import Job
from ...security import api_login_required, current_actor, ensure_visible
from ...utils import json_body, ok
from ..common import scoped_query, status_filter

jobs_bp = Blueprint("jobs", __name__, url_prefix="/jobs")


@jobs_bp.route("", methods=["GET"])
@api_login_required
def list_jobs():
    query = status_filter(scoped_query(Job, current_actor()), Job, JobStatus)
    jobs = query.order_by(Job.created_at.desc(), Job.id.desc()).all()
    return ok([job.to_dict() for job in jobs])


@jobs_bp.route("", methods=["POST"])
@api_login_required
def create():
    job = create_job(current_actor(), json_body())
    return ok(job.to_dict(), status=201)


@jobs_bp.route("/<int:job_id>", methods=["GET"])
@api_login_required
def get_job(job_id: int):
    job = ensure_visible(current_actor(), db.session.get(Job, job_id), "Job")
    return ok(job.to_dict())


@jobs_bp.route("/<int:job_id>", methods=["PUT"])
@api_login_required
def update(job_id: int):
    job = update_job(current_actor(), job_id, json_body())
    return ok(job.to_dict())


@jobs_bp.route("/<int:job_id>", methods=["DELETE"])
@api_login_required
def delete(job_id: int):
    delete_job(current_actor(), job_id)
    return ok({"message": "Job deleted"})
