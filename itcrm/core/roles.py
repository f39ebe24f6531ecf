from enum import StrEnum


class Role(StrEnum):
    ADMIN = "admin"
    SALES_MANAGER = "sales_manager"
    FREELANCE_CONSULTANT = "freelance_consultant"
