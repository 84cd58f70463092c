"""忠诚度核心：周期追踪、资格评估、风险评分、折扣计算（纯计算，无 I/O）。"""
from .cycle import compute_cycle
from .eligibility import evaluate_eligibility
from .risk import score_risk
from .discount import calculate_discount

__all__ = [
    "compute_cycle",
    "evaluate_eligibility",
    "score_risk",
    "calculate_discount",
]
