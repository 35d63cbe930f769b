"""
Grant analysis engine.

Dispatches the five typed operations to the analysis components. Analytical
operations are keyed by a fingerprint of (operation, canonicalized input) and
resolved in this order:

    result cache (coalesced, TTL)  ->  relational store (within TTL)  ->  compute

Every computed result is recorded in the store. Cache and store failures are
logged and never fail a request.
"""

import logging
import threading
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from grant_engine.analysis.compliance_validator import ComplianceValidator
from grant_engine.analysis.eligibility_evaluator import EligibilityEvaluator
from grant_engine.analysis.guidance import GuidanceComposer
from grant_engine.analysis.pattern_miner import SuccessPatternMiner
from grant_engine.analysis.requirement_extractor import RequirementExtractor
from grant_engine.analysis.rule_sets import RuleSetRegistry
from grant_engine.api.backend import TextBackend
from grant_engine.core.confidence import ConfidenceScorer
from grant_engine.core.config import EngineConfig
from grant_engine.core.domain_models import (
    ApplicationGuidance,
    ComplianceResult,
    EligibilityCheck,
    GrantAnalysisResult,
    SuccessPattern,
    SuccessPatternResult,
)
from grant_engine.core.errors import GrantEngineError, InvalidInput
from grant_engine.core.utils import fingerprint
from grant_engine.ingest.corpus_loader import CorpusRegistry
from grant_engine.ingest.text_cleaner import AnnouncementTextCleaner
from grant_engine.operations import (
    ANALYZE_GRANT_REQUIREMENTS,
    AnalyzeGrantRequirements,
    AnalyzeSuccessPatterns,
    CheckEligibility,
    GenerateApplicationGuidance,
    Request,
    ValidateCompliance,
    parse_request,
)
from grant_engine.storage.analysis_store import AnalysisStore
from grant_engine.storage.db import open_database
from grant_engine.storage.result_cache import MemoryKeyValueCache, ResultCache, SqliteKeyValueCache

logger = logging.getLogger(__name__)


class GrantAnalysisEngine:
    """
    Entry point for all analysis operations.

    Usage:
        engine = GrantAnalysisEngine.from_config()
        result = engine.handle("analyze_grant_requirements",
                               {"grantText": text, "grantId": "g-1", "depth": "basic"})
        payload = result.to_dict()
    """

    def __init__(
        self,
        extractor: Optional[RequirementExtractor] = None,
        evaluator: Optional[EligibilityEvaluator] = None,
        validator: Optional[ComplianceValidator] = None,
        miner: Optional[SuccessPatternMiner] = None,
        composer: Optional[GuidanceComposer] = None,
        rule_sets: Optional[RuleSetRegistry] = None,
        corpora: Optional[CorpusRegistry] = None,
        cache: Optional[ResultCache] = None,
        store: Optional[AnalysisStore] = None,
        ttl_hours: float = 24.0,
        wait_timeout: Optional[float] = None,
        max_latest: int = 256,
    ):
        """
        Initialize engine.

        Args:
            extractor, evaluator, validator, miner, composer: Analysis components
            rule_sets: Compliance rule-set registry
            corpora: Outcome corpus registry
            cache: Result cache (None disables caching)
            store: Analysis store (None disables persistence)
            ttl_hours: Age limit for reusing stored results
            wait_timeout: Seconds a caller waits on a shared computation
            max_latest: Grants whose latest requirement analysis is kept in memory
        """
        scorer = ConfidenceScorer()
        self.extractor = extractor or RequirementExtractor(scorer=scorer)
        self.evaluator = evaluator or EligibilityEvaluator(scorer)
        self.validator = validator or ComplianceValidator(scorer)
        self.miner = miner or SuccessPatternMiner(scorer)
        self.composer = composer or GuidanceComposer(scorer)
        self.rule_sets = rule_sets or RuleSetRegistry()
        self.corpora = corpora or CorpusRegistry()
        self.cache = cache
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self.wait_timeout = wait_timeout

        # Latest requirement analysis per grant, least recently used first
        self._latest_analysis: "OrderedDict[str, GrantAnalysisResult]" = OrderedDict()
        self._latest_patterns: "OrderedDict[str, List[SuccessPattern]]" = OrderedDict()
        self._latest_lock = threading.Lock()
        self.max_latest = max(1, max_latest)

        self._handlers: Dict[type, Callable[[Any], Any]] = {
            AnalyzeGrantRequirements: self._analyze_grant_requirements,
            CheckEligibility: self._check_eligibility,
            ValidateCompliance: self._validate_compliance,
            AnalyzeSuccessPatterns: self._analyze_success_patterns,
            GenerateApplicationGuidance: self._generate_application_guidance,
        }

    @classmethod
    def from_config(cls, config: Optional[EngineConfig] = None) -> "GrantAnalysisEngine":
        """Build a fully wired engine from configuration (environment by default)."""
        config = config or EngineConfig.from_env()
        scorer = ConfidenceScorer()

        backend = TextBackend.from_config(config)
        store = AnalysisStore(open_database(config.database))

        cache = None
        if config.enable_caching:
            kv = SqliteKeyValueCache(config.cache_path) if config.cache_path else MemoryKeyValueCache()
            cache = ResultCache(kv, ttl_hours=config.cache_expiry_hours)

        engine = cls(
            extractor=RequirementExtractor(
                backend=backend,
                scorer=scorer,
                min_text_length=config.min_text_length,
                cleaner=AnnouncementTextCleaner(),
            ),
            evaluator=EligibilityEvaluator(scorer),
            validator=ComplianceValidator(scorer),
            miner=SuccessPatternMiner(scorer, min_sample_size=config.min_sample_size),
            composer=GuidanceComposer(scorer),
            rule_sets=RuleSetRegistry(rules_dir=config.rules_dir),
            corpora=CorpusRegistry(),
            cache=cache,
            store=store,
            ttl_hours=config.cache_expiry_hours,
            wait_timeout=config.backend_timeout_seconds * (config.backend_max_retries + 1),
        )
        logger.info(
            f"Engine ready: backend={'on' if backend else 'off'}, "
            f"caching={'on' if cache else 'off'}, rule sets={', '.join(engine.rule_sets.ids())}"
        )
        return engine

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def handle(self, name: str, arguments: Optional[Dict[str, Any]]):
        """Parse a tool-style call and execute it."""
        return self.execute(parse_request(name, arguments))

    def execute(self, request: Request):
        """
        Execute a typed request.

        Raises:
            GrantEngineError: any subclass, tagged with the operation name
            ResultTimeout: wait_timeout elapsed before a shared computation finished
        """
        handler = self._handlers.get(type(request))
        if handler is None:
            raise InvalidInput(f"unsupported request type {type(request).__name__}", field="operation")

        logger.debug(f"Executing {request.operation} for {request.subject_id}")
        try:
            return handler(request)
        except GrantEngineError as e:
            logger.warning(f"{request.operation} failed: {e}")
            raise e.with_operation(request.operation)

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()

    # -------------------------------------------------------------------------
    # Cache / store plumbing
    # -------------------------------------------------------------------------

    def _stored(self, operation: str, key: str, model):
        if self.store is None:
            return None
        try:
            payload = self.store.latest(operation, key, max_age=self.ttl)
        except Exception as e:
            logger.warning(f"Store lookup failed for {operation}: {e}")
            return None
        if payload is None:
            return None
        try:
            return model.from_payload(payload)
        except Exception as e:
            logger.warning(f"Discarding unreadable stored {operation} result: {e}")
            return None

    def _record(self, operation: str, key: str, subject_id: Optional[str], result: Any) -> None:
        if self.store is None:
            return
        try:
            self.store.record(operation, key, subject_id, result.to_dict())
        except Exception as e:
            logger.warning(f"Could not record {operation} result for {subject_id}: {e}")

    def _resolve(self, operation: str, key: str, subject_id: Optional[str], model,
                 compute: Callable[[], Any]):
        def produce():
            stored = self._stored(operation, key, model)
            if stored is not None:
                logger.debug(f"Reusing stored {operation} result {key[:12]}")
                return stored
            result = compute()
            self._record(operation, key, subject_id, result)
            return result

        if self.cache is None:
            return produce()

        result, hit = self.cache.get_or_compute(
            key,
            produce,
            encode=lambda r: r.to_dict(),
            decode=model.from_payload,
            timeout=self.wait_timeout,
        )
        if hit:
            logger.debug(f"{operation} served from cache ({key[:12]})")
        return result

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def _analyze_grant_requirements(self, request: AnalyzeGrantRequirements) -> GrantAnalysisResult:
        key = fingerprint(request.operation, request.fingerprint_input())
        result = self._resolve(
            request.operation, key, request.subject_id, GrantAnalysisResult,
            lambda: self.extractor.extract(request.grant_text, request.grant_id, request.depth),
        )
        self._remember(self._latest_analysis, result.grant_id, result)
        return result

    def _check_eligibility(self, request: CheckEligibility) -> EligibilityCheck:
        key = fingerprint(request.operation, request.fingerprint_input())
        return self._resolve(
            request.operation, key, request.subject_id, EligibilityCheck,
            lambda: self.evaluator.evaluate(
                request.organization_profile,
                request.eligibility_criteria,
                grant_id=request.grant_id,
                strict=request.strict_mode,
                project=request.project_details,
            ),
        )

    def _validate_compliance(self, request: ValidateCompliance) -> ComplianceResult:
        rules = self.rule_sets.get(request.rule_set_id)
        key = fingerprint(request.operation, dict(request.fingerprint_input(), rules=list(rules)))
        return self._resolve(
            request.operation, key, request.subject_id, ComplianceResult,
            lambda: self.validator.validate(
                request.application_id,
                rules,
                request.application_content,
                rule_set_id=request.rule_set_id,
                level=request.validation_level,
                framework=request.regulatory_framework,
            ),
        )

    def _analyze_success_patterns(self, request: AnalyzeSuccessPatterns) -> SuccessPatternResult:
        corpus, corpus_id = self.corpora.resolve(request.corpus_reference)
        key = fingerprint(request.operation, dict(request.fingerprint_input(), corpus=corpus_id))

        def compute() -> SuccessPatternResult:
            result = self.miner.mine(
                corpus, request.grant_type, request.scope, min_sample_size=request.min_sample_size,
            )
            if self.store is not None and result.patterns:
                try:
                    self.store.upsert_patterns(result)
                except Exception as e:
                    logger.warning(f"Could not store success patterns for {request.grant_type}: {e}")
            return result

        result = self._resolve(request.operation, key, request.subject_id, SuccessPatternResult, compute)
        if result.patterns:
            self._remember(self._latest_patterns, request.grant_type.strip().lower(), list(result.patterns))
        return result

    def _remember(self, table: OrderedDict, key: str, value: Any) -> None:
        with self._latest_lock:
            table[key] = value
            table.move_to_end(key)
            while len(table) > self.max_latest:
                table.popitem(last=False)

    def _latest_analysis_for(self, grant_id: str) -> Optional[GrantAnalysisResult]:
        with self._latest_lock:
            analysis = self._latest_analysis.get(grant_id)
            if analysis is not None:
                self._latest_analysis.move_to_end(grant_id)
        if analysis is not None or self.store is None:
            return analysis

        try:
            payload = self.store.latest_for_subject(ANALYZE_GRANT_REQUIREMENTS, grant_id)
        except Exception as e:
            logger.warning(f"Store lookup failed for grant {grant_id}: {e}")
            return None
        return GrantAnalysisResult.from_payload(payload) if payload else None

    def _patterns_for(self, grant_type: Optional[str]) -> List[SuccessPattern]:
        if not grant_type:
            return []
        wanted = grant_type.strip().lower()
        with self._latest_lock:
            patterns = self._latest_patterns.get(wanted)
        if patterns is not None or self.store is None:
            return patterns or []

        try:
            payloads = self.store.list_patterns(wanted)
        except Exception as e:
            logger.warning(f"Store lookup failed for {wanted} patterns: {e}")
            return []

        patterns = []
        for payload in payloads:
            try:
                patterns.append(SuccessPattern.from_payload(payload))
            except Exception as e:
                logger.warning(f"Skipping unreadable stored pattern for {wanted}: {e}")
        return patterns

    def _generate_application_guidance(self, request: GenerateApplicationGuidance) -> ApplicationGuidance:
        analysis = self._latest_analysis_for(request.grant_id)
        if analysis is None:
            raise InvalidInput(
                f"no requirement analysis for grant {request.grant_id!r}; "
                f"run {ANALYZE_GRANT_REQUIREMENTS} first",
                field="grantId",
            )

        eligibility = None
        if request.organization_profile is not None and analysis.eligibility_criteria:
            eligibility = self.evaluator.evaluate(
                request.organization_profile, analysis.eligibility_criteria, grant_id=request.grant_id,
            )

        patterns = self._patterns_for(request.grant_type)
        guidance = self.composer.compose(
            analysis,
            request.organization_type.value,
            eligibility=eligibility,
            stage=request.application_stage,
            guidance_type=request.guidance_type,
            patterns=patterns,
        )

        key = fingerprint(request.operation, dict(
            request.fingerprint_input(),
            analysisDate=analysis.analysis_date,
            patterns=[p.id for p in patterns],
        ))
        self._record(request.operation, key, request.subject_id, guidance)
        return guidance
