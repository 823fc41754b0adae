from holdingdash.models.enterprise import Enterprise
from holdingdash.models.finance import Client, ClientCost, EmployeeClientRate, Expense
from holdingdash.models.permission import (
    AuditLog,
    UserAppPermission,
    UserEnterpriseAccess,
    UserModulePermission,
)
from holdingdash.models.setting import Setting
from holdingdash.models.staff import Employee, Equipment
from holdingdash.models.user import Profile

__all__ = [
    # Tenants
    "Enterprise",
    # Users & grants
    "Profile",
    "UserAppPermission",
    "UserEnterpriseAccess",
    "UserModulePermission",
    "AuditLog",
    # Settings
    "Setting",
    # Staff
    "Employee",
    "Equipment",
    # Revenue & costs
    "Client",
    "EmployeeClientRate",
    "ClientCost",
    "Expense",
]
