"""Fixed catalogue of file categories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    description: str


CATEGORIES: Tuple[Category, ...] = (
    Category("resume", "Resume & CV", "Professional resumes, CVs, and career documents"),
    Category("tax", "Tax Documents", "Tax returns, receipts, and financial records"),
    Category("teaching", "Teaching Materials", "Course materials, lesson plans, and educational resources"),
    Category("contracts", "Contracts & Agreements", "Client contracts, teaching agreements, and legal documents"),
    Category("submission", "Submission Documents", "Lecture plans, activity logs, result reports"),
    Category("student", "Student Management", "Attendance, quiz results, participant lists"),
    Category("automation", "Automation Tools", "Google Sheets, Apps Script, Zoom CSV, etc."),
    Category("proposal", "Proposals & Estimates", "Project proposals, quotations, and service pricing"),
    Category("sns", "SNS & Marketing", "Thumbnails, hashtags, scripts, and social posts"),
    Category("income", "Earnings & Settlements", "Income statements, deductions, transportation fees"),
    Category("taxes", "Taxes", "Income tax, VAT, tax advisor communication"),
    Category("legal", "Legal & Policy", "Agreements, licenses, IP, usage rights"),
    Category("evaluation", "Feedback & Evaluation", "Satisfaction results, feedback records"),
    Category("schedule", "Schedule Management", "Lecture plans, deadlines, calendar entries"),
    Category("backup", "Backup & Recovery", "Full zip backups, critical file storage"),
    Category("clients", "Client/Agency History", "Communication history, contract terms"),
    Category("portfolio", "Portfolio & Results", "Best lectures, reviews, achievement records"),
    Category("learning", "Self-Development", "Certificates, completed courses, workshops"),
    Category("growth", "Income Strategy & Tracking", "High ROI content tracking, growth ideas"),
    Category("brand", "Brand Management", "Profiles, slogans, PR messages"),
    Category("products", "Digital Products / Automation", "Paid templates, online lectures, scripts"),
    Category("time", "Time ROI & Efficiency", "Time-to-income analysis, automation priorities"),
    Category("ai", "AI/Automation Usage", "Prompt logs, usage records, GPT experiments"),
    Category("legacy", "Legacy & IP Management", "Handover manuals, resale strategy"),
    Category("insurance", "Insurance Docs", "Claims, policy copies, diagnosis results"),
    Category("realestate", "Real Estate & Rental Docs", "Contracts, taxes, utility bills"),
)

_BY_ID: Dict[str, Category] = {category.id: category for category in CATEGORIES}


def get_category(category_id: str) -> Optional[Category]:
    return _BY_ID.get(category_id)


def is_known_category(category_id: str) -> bool:
    return category_id in _BY_ID


__all__ = ["CATEGORIES", "Category", "get_category", "is_known_category"]
