from pitch.models.audit import AuditLog
from pitch.crm.models import Contact, Job, PipelineEntry
from pitch.numbering.models import SequenceCounter
from pitch.tenancy.models import Location, Profile, Tenant, UserLocationAssignment, UserRole

__all__ = [
	"AuditLog",
	"Contact",
	"Job",
	"Location",
	"PipelineEntry",
	"Profile",
	"SequenceCounter",
	"Tenant",
	"UserLocationAssignment",
	"UserRole",
]
