from enum import Enum


class SiteStatusEnum(str, Enum):
    draft = "draft"
    active = "active"
    failed = "failed"


class DeploymentStatusEnum(str, Enum):
    pending = "pending"
    deploying = "deploying"
    active = "active"
    failed = "failed"
