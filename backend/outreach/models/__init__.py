from .user import User
from .token import Token, TokenPayload
from .operation_log import OperationLog, OperationLogRead
from .sender_profile import SenderProfile, SenderProfileCreate, SenderProfileUpdate, SenderProfileRead
from .company import Company, CompanyCreate, CompanyRead, CompanySummary
from .contact import Contact, ContactCreate, ContactRead, ContactSummary
from .event import Event, EventCreate, EventRead, CampaignEvent
from .recipient import (
    CampaignRecipient, CampaignRecipientRead, CampaignRecipientDetail, CampaignRecipientUpdate,
    RecipientAdd, RecipientBulkDelete, RecipientBulkApprove,
)
from .campaign import (
    Campaign, CampaignCreate, CampaignUpdate, CampaignRead,
    CampaignListItem, CampaignDetail, RecipientCounts,
)
