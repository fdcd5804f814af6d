"""
Decision combinator and the request-facing Authorizer.

Bypass policies are evaluated first: the first one that authorizes grants
the request outright. Applicable normal policies must all authorize; any
definite Forbidden fails fast. A request no policy applies to is forbidden.
Before records are loaded the combined decision is expressed as a filter
the storage layer evaluates per row.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from ..audit.logger import AuditLogger, DecisionEvent, MemoryAuditLogger
from ..core.config import EngineConfig
from ..core.types import EvaluationContext, FactTruthValue
from ..errors import EngineFault, ForbiddenError
from ..expr.expression import (
    FALSE,
    TRUE,
    Predicate,
    as_predicate,
    fold_and,
    fold_or,
    is_false,
    is_true,
)
from ..metrics.collector import DecisionMetrics
from ..store.types import DataLayer, ExpressionCompiler, Record
from .builder import CompiledPolicySet
from .cache import DecisionCache
from .check_evaluator import evaluate_condition
from .field_policy import apply_redaction, redact
from .policy_evaluator import evaluate_policy
from .types import (
    Authorized,
    Decision,
    FieldVisibility,
    FilteredBy,
    Forbidden,
    Policy,
    RequiresStrictCheck,
)


logger = logging.getLogger(__name__)

NO_APPLICABLE_POLICY = "no policy applies"


def outcome_name(decision: Decision) -> str:
    """Short label of a decision variant, used for logs, metrics and audit."""
    if isinstance(decision, Authorized):
        return "authorized"
    if isinstance(decision, Forbidden):
        return "forbidden"
    if isinstance(decision, FilteredBy):
        return "filtered"
    return "strict"


def ensure_authorized(decision: Decision) -> Decision:
    """
    Return ``decision`` unless it is Forbidden.

    Raises:
        ForbiddenError: carrying the decision's reasons
    """
    if isinstance(decision, Forbidden):
        raise ForbiddenError(
            "Forbidden: " + "; ".join(decision.reasons) if decision.reasons else "Forbidden",
            list(decision.reasons),
            list(decision.policies_evaluated)
        )
    return decision


def combine(policy_set: CompiledPolicySet, context: EvaluationContext,
            compiler: DataLayer) -> Decision:
    """
    Combine every applicable policy of a compiled set into one decision.

    Returns:
        Authorized or Forbidden when definite. Otherwise FilteredBy, whose
        filter is exact when ``strict_policies`` is empty and a superset
        otherwise, or RequiresStrictCheck when no filter narrows anything.
    """
    skip = policy_set.analysis.never_applicable(context.action.name)
    evaluated: List[str] = []
    strict: List[Policy] = []
    # Record sets some bypass may authorize
    alternatives: List[Predicate] = []

    for index, policy in enumerate(policy_set.policies):
        if not policy.bypass or index in skip:
            continue
        applies = evaluate_condition(policy, context)
        if applies is FactTruthValue.FALSE:
            continue
        evaluated.append(policy.label)
        if applies is FactTruthValue.UNKNOWN:
            strict.append(policy)
            alternatives.append(TRUE)
            continue

        result = evaluate_policy(policy, context, compiler)
        if isinstance(result, Authorized):
            logger.debug(f"{policy_set.name}.{context.action.name}: bypass '{policy.label}' authorized")
            return Authorized(bypassed=True, policies_evaluated=tuple(evaluated))
        if isinstance(result, FilteredBy):
            alternatives.append(result.filter)
        elif isinstance(result, RequiresStrictCheck):
            strict.append(policy)
            alternatives.append(result.prefilter)

    filters: List[Predicate] = []
    normal_strict: List[Policy] = []
    applicable = 0
    forbidden: Optional[Forbidden] = None

    for index, policy in enumerate(policy_set.policies):
        if policy.bypass or index in skip:
            continue
        applies = evaluate_condition(policy, context)
        if applies is FactTruthValue.FALSE:
            continue
        applicable += 1
        evaluated.append(policy.label)
        if applies is FactTruthValue.UNKNOWN:
            normal_strict.append(policy)
            continue

        result = evaluate_policy(policy, context, compiler)
        if isinstance(result, Forbidden):
            forbidden = result
            break
        if isinstance(result, FilteredBy):
            filters.append(result.filter)
        elif isinstance(result, RequiresStrictCheck):
            normal_strict.append(policy)
            filters.append(result.prefilter)

    if forbidden is not None or applicable == 0:
        normal_part: Predicate = FALSE
        normal_strict = []
    else:
        normal_part = fold_and(filters)

    overall = fold_or(alternatives + [normal_part])
    strict_policies = tuple(strict + normal_strict)
    policies_evaluated = tuple(evaluated)

    if is_false(overall):
        reasons = forbidden.reasons if forbidden is not None else (NO_APPLICABLE_POLICY,)
        return Forbidden(reasons=reasons, policies_evaluated=policies_evaluated)
    if not strict_policies:
        if is_true(overall):
            return Authorized(policies_evaluated=policies_evaluated)
        return FilteredBy(overall, (), policies_evaluated)
    if is_true(overall):
        return RequiresStrictCheck(strict_policies, TRUE, policies_evaluated)
    return FilteredBy(overall, strict_policies, policies_evaluated)


@dataclass(frozen=True)
class ReadResult:
    """Records a read returned, the decision behind them and how many the strict pass dropped."""
    records: Tuple[Record, ...]
    decision: Decision
    excluded: int = 0


class Authorizer:
    """
    Authorizes actions against one entity's compiled policy set.

    Args:
        policy_set: The compiled policies of the entity
        data_layer: Storage collaborator; required by ``read`` and keyed
            ``authorize_change``
        config: Engine configuration
        audit_logger: Receives one event per decision; created from config
            when ``audit_enabled`` is set
        metrics: Decision metrics; created from config when
            ``metrics_enabled`` is set
    """

    def __init__(self,
                 policy_set: CompiledPolicySet,
                 data_layer: Optional[DataLayer] = None,
                 config: Optional[EngineConfig] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 metrics: Optional[DecisionMetrics] = None):
        self.policy_set = policy_set
        self.data_layer = data_layer
        self.compiler: DataLayer = data_layer or ExpressionCompiler()
        self.config = config or EngineConfig()
        self.config.validate()

        self.cache = DecisionCache(self.config.cache_size) if self.config.cache_enabled else None

        if audit_logger is None and self.config.audit_enabled:
            audit_logger = MemoryAuditLogger(self.config.audit_max_entries)
        self.audit_logger = audit_logger

        if metrics is None and self.config.metrics_enabled:
            metrics = DecisionMetrics()
        self.metrics = metrics

    @property
    def entity_name(self) -> str:
        return self.policy_set.name

    def _decide(self, context: EvaluationContext) -> Decision:
        if self.cache is None or context.has_record:
            return combine(self.policy_set, context, self.compiler)

        key = DecisionCache.key_for(self.entity_name, context)
        decision = self.cache.get(key)
        if self.metrics is not None:
            self.metrics.record_cache(decision is not None)
        if decision is None:
            decision = combine(self.policy_set, context, self.compiler)
            self.cache.put(key, decision)
        return decision

    def _decide_record(self, context: EvaluationContext, record: Mapping[str, Any]) -> Decision:
        decision = combine(self.policy_set, context.with_record(record), self.compiler)
        if not isinstance(decision, (Authorized, Forbidden)):
            raise EngineFault(
                f"Record-level evaluation of {self.entity_name}.{context.action.name} "
                f"was not definite: {outcome_name(decision)}",
                details={'decision': decision.to_dict()}
            )
        if self.metrics is not None:
            self.metrics.record_strict_check(self.entity_name, decision.is_authorized)
        return decision

    def _observe(self, context: EvaluationContext, decision: Decision, start: float) -> None:
        duration = time.perf_counter() - start
        outcome = outcome_name(decision)
        actor_id = context.actor.id if context.actor is not None else None
        message = f"{self.entity_name}.{context.action.name} actor={actor_id}: {outcome}"
        if self.config.log_decisions:
            logger.info(message)
        else:
            logger.debug(message)

        if self.metrics is not None:
            self.metrics.record_decision(self.entity_name, context.action.name, outcome, duration)

        if self.audit_logger is not None:
            self.audit_logger.record(DecisionEvent(
                entity=self.entity_name,
                action=context.action.name,
                outcome=outcome,
                actor_id=None if actor_id is None else str(actor_id),
                tenant=context.tenant,
                reasons=tuple(getattr(decision, 'reasons', ())),
                policies_evaluated=tuple(getattr(decision, 'policies_evaluated', ())),
                details={'decision': decision.to_dict(), 'duration': duration}
            ))

    def authorize(self, context: EvaluationContext) -> Decision:
        """
        Decide a request.

        Without a record the result may be FilteredBy or RequiresStrictCheck;
        with one it is always Authorized or Forbidden.
        """
        start = time.perf_counter()
        if context.has_record:
            decision = self._decide_record(context, context.record)
        else:
            decision = self._decide(context)
        self._observe(context, decision, start)
        return decision

    def authorize_record(self, context: EvaluationContext, record: Mapping[str, Any]) -> Decision:
        """Decide a request against one loaded record; always definite."""
        start = time.perf_counter()
        decision = self._decide_record(context, record)
        self._observe(context, decision, start)
        return decision

    async def read(self, context: EvaluationContext,
                   query_filter: Optional[Any] = None,
                   redact_fields: bool = False) -> ReadResult:
        """
        Run an authorized query.

        The authorization filter is AND-ed with ``query_filter`` and pushed to
        the data layer. When the decision requires a strict pass, every loaded
        record is re-checked and the ones that fail are dropped.

        Args:
            context: Request context; any record on it is ignored
            query_filter: Caller's own filter predicate
            redact_fields: Replace invisible fields with FORBIDDEN_FIELD
        """
        if self.data_layer is None:
            raise ValueError("read requires an authorizer with a data layer")

        start = time.perf_counter()
        context = context.without_record()
        decision = self._decide(context)
        self._observe(context, decision, start)

        if isinstance(decision, Forbidden):
            return ReadResult((), decision)

        parts = []
        if query_filter is not None:
            parts.append(as_predicate(query_filter))
        if not isinstance(decision, Authorized):
            parts.append(decision.filter)
        combined = fold_and(parts) if parts else None
        if combined is not None and is_true(combined):
            combined = None

        records = await self.data_layer.run_query(self.entity_name, combined)

        excluded = 0
        if decision.requires_strict:
            kept = []
            for record in records:
                if self._decide_record(context, record).is_authorized:
                    kept.append(record)
                else:
                    excluded += 1
            records = kept
            logger.debug(f"{self.entity_name}: strict pass excluded {excluded} of {excluded + len(kept)} records")

        if redact_fields:
            records = [self.redact_record(context, record) for record in records]

        return ReadResult(tuple(records), decision, excluded)

    async def authorize_change(self, context: EvaluationContext, key: Any = None) -> Decision:
        """
        Decide a create, update, destroy or generic action.

        The request is first decided without a record. If that is not
        definite, the record is built (the stored record merged with the
        pending changes when ``key`` is given, otherwise the changes alone)
        and decided strictly. Forbidden is returned, not raised.
        """
        start = time.perf_counter()
        context = context.without_record()
        decision = self._decide(context)

        if not isinstance(decision, (Authorized, Forbidden)):
            if key is not None:
                if self.data_layer is None:
                    raise ValueError("authorize_change with a key requires a data layer")
                stored = await self.data_layer.get(self.entity_name, key)
                record = dict(stored)
                record.update(context.changes)
            else:
                record = dict(context.changes)
            decision = self._decide_record(context, record)

        self._observe(context, decision, start)
        return decision

    def redact(self, fields: Iterable[str], context: EvaluationContext,
               record: Optional[Mapping[str, Any]] = None) -> dict:
        """Field visibility for ``fields``; see ``field_policy.redact``."""
        return redact(
            fields,
            context,
            self.policy_set.policies,
            self.policy_set.field_policies,
            self.compiler,
            record
        )

    def redact_record(self, context: EvaluationContext, record: Mapping[str, Any]) -> dict:
        """Copy of ``record`` with every invisible field replaced by FORBIDDEN_FIELD."""
        visibility = self.redact(list(record), context, record)
        return apply_redaction(record, visibility)

    def visible_fields(self, context: EvaluationContext,
                       record: Optional[Mapping[str, Any]] = None) -> List[str]:
        """Sorted names of the entity's fields the actor may see."""
        entity = self.policy_set.entity
        names = sorted(set(entity.attributes) | set(entity.relationships))
        visibility = self.redact(names, context, record)
        return [n for n in names if visibility[n] is FieldVisibility.VISIBLE]
