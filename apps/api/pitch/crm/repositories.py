from __future__ import annotations

from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.platform.security.repository import BaseRepository
from pitch.platform.security.rls import CONTACT_POLICY, JOB_POLICY, PIPELINE_ENTRY_POLICY


class ContactRepository(BaseRepository):
    model = Contact
    policy = CONTACT_POLICY


class PipelineEntryRepository(BaseRepository):
    model = PipelineEntry
    policy = PIPELINE_ENTRY_POLICY


class JobRepository(BaseRepository):
    model = Job
    policy = JOB_POLICY


contact_repository = ContactRepository()
pipeline_entry_repository = PipelineEntryRepository()
job_repository = JobRepository()
