#!/usr/bin/env python3
"""
Grant Analysis CLI

Runs the analysis operations on local files and prints JSON results.

Usage:
    # Extract requirements from an announcement
    python run_analysis.py analyze --grant-id G-1 --text-file data/grants/G-1.txt --depth deep

    # Analyze every .txt / .html announcement in a directory
    python run_analysis.py analyze --batch-dir data/grants --output data/analyses.json

    # Check an organization against the criteria of an analysis
    python run_analysis.py eligibility --profile org.json --criteria data/analyses/G-1.json
    python run_analysis.py eligibility --profile org.json --criteria G-1.json --project project.json

    # Validate an application against the default rule set
    python run_analysis.py compliance --application app.json --rule-set default
    python run_analysis.py compliance --application app.json --level strict --framework EU

    # Mine success patterns from a corpus
    python run_analysis.py patterns --grant-type community --corpus data/outcomes.csv

    # Guidance for a grant analyzed earlier
    python run_analysis.py guidance --grant-id G-1 --org-type nonprofit
    python run_analysis.py guidance --grant-id G-1 --org-type nonprofit --stage drafting --grant-type community

    # Remove expired cache entries
    python run_analysis.py cleanup
"""

import sys
import json
import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv
from tqdm import tqdm

from grant_engine.core.config import EngineConfig
from grant_engine.core.errors import GrantEngineError
from grant_engine.engine import GrantAnalysisEngine

load_dotenv()

LOG_DIR = Path(__file__).parent / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

log_file = LOG_DIR / f"analysis_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_file),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

ANNOUNCEMENT_SUFFIXES = (".txt", ".html", ".htm", ".md")


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_output(payload: Any, output: str = None) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
        logger.info(f"Wrote {output}")
    else:
        print(text)


def load_criteria(path: str) -> List[Dict[str, Any]]:
    """Criteria file: a list of criteria, or a saved requirement analysis."""
    data = load_json(path)
    if isinstance(data, dict):
        return data.get("eligibilityCriteria") or data.get("eligibility_criteria") or []
    return data


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_analyze(engine: GrantAnalysisEngine, args) -> Any:
    if args.batch_dir:
        paths = sorted(
            p for p in Path(args.batch_dir).iterdir()
            if p.suffix.lower() in ANNOUNCEMENT_SUFFIXES
        )
        logger.info(f"Analyzing {len(paths)} announcements from {args.batch_dir}")

        results, failures = [], 0
        for path in tqdm(paths, desc="Analyzing"):
            try:
                result = engine.handle("analyze_grant_requirements", {
                    "grantText": path.read_text(encoding="utf-8"),
                    "grantId": path.stem,
                    "depth": args.depth,
                })
                results.append(result.to_dict())
            except GrantEngineError as e:
                failures += 1
                logger.error(f"{path.name}: {e}")
                results.append(e.to_dict())

        logger.info(f"Analyzed {len(paths) - failures}/{len(paths)} announcements")
        return results

    if not args.text_file or not args.grant_id:
        raise SystemExit("analyze needs --text-file and --grant-id (or --batch-dir)")

    return engine.handle("analyze_grant_requirements", {
        "grantText": Path(args.text_file).read_text(encoding="utf-8"),
        "grantId": args.grant_id,
        "depth": args.depth,
    }).to_dict()


def cmd_eligibility(engine: GrantAnalysisEngine, args) -> Any:
    return engine.handle("check_eligibility", {
        "organizationProfile": load_json(args.profile),
        "eligibilityCriteria": load_criteria(args.criteria),
        "grantId": args.grant_id,
        "strictMode": args.strict,
        "projectDetails": load_json(args.project) if args.project else None,
    }).to_dict()


def cmd_compliance(engine: GrantAnalysisEngine, args) -> Any:
    content = load_json(args.application)
    application_id = args.application_id or content.get("applicationId") or Path(args.application).stem
    return engine.handle("validate_compliance", {
        "applicationId": application_id,
        "applicationContent": content,
        "ruleSetId": args.rule_set,
        "validationLevel": args.level,
        "regulatoryFramework": args.framework,
    }).to_dict()


def cmd_patterns(engine: GrantAnalysisEngine, args) -> Any:
    return engine.handle("analyze_success_patterns", {
        "grantType": args.grant_type,
        "corpusReference": args.corpus,
        "scope": args.scope,
        "minSampleSize": args.min_sample_size,
    }).to_dict()


def cmd_guidance(engine: GrantAnalysisEngine, args) -> Any:
    return engine.handle("generate_application_guidance", {
        "grantId": args.grant_id,
        "organizationType": args.org_type,
        "organizationProfile": load_json(args.profile) if args.profile else None,
        "applicationStage": args.stage,
        "guidanceType": args.guidance_type,
        "grantType": args.grant_type,
    }).to_dict()


def cmd_cleanup(engine: GrantAnalysisEngine, args) -> Any:
    if engine.cache is None:
        logger.info("Caching disabled - nothing to clean")
        return {"deleted": 0}
    return {"deleted": engine.cache.cleanup_expired()}


COMMANDS = {
    "analyze": cmd_analyze,
    "eligibility": cmd_eligibility,
    "compliance": cmd_compliance,
    "patterns": cmd_patterns,
    "guidance": cmd_guidance,
    "cleanup": cmd_cleanup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Grant eligibility and compliance analysis')
    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='Write JSON result to this file instead of stdout'
    )
    parser.add_argument(
        '--env-file',
        type=str,
        default=None,
        help='Path to a .env file'
    )
    sub = parser.add_subparsers(dest='command', required=True)

    analyze = sub.add_parser('analyze', help='Extract requirements from grant text')
    analyze.add_argument('--grant-id', '-g', type=str, help='Grant identifier')
    analyze.add_argument('--text-file', '-t', type=str, help='Announcement text or HTML file')
    analyze.add_argument('--batch-dir', '-b', type=str, help='Directory of announcements (id = file stem)')
    analyze.add_argument('--depth', '-d', choices=['basic', 'deep'], default='basic')

    eligibility = sub.add_parser('eligibility', help='Check an organization against criteria')
    eligibility.add_argument('--profile', '-p', type=str, required=True, help='Organization profile JSON')
    eligibility.add_argument('--criteria', '-c', type=str, required=True,
                             help='Criteria JSON list or saved analysis JSON')
    eligibility.add_argument('--grant-id', '-g', type=str, default=None)
    eligibility.add_argument('--strict', action='store_true',
                             help='Fail when a mandatory criterion cannot be evaluated')
    eligibility.add_argument('--project', type=str, default=None, help='Project details JSON')

    compliance = sub.add_parser('compliance', help='Validate an application')
    compliance.add_argument('--application', '-a', type=str, required=True, help='Application content JSON')
    compliance.add_argument('--application-id', type=str, default=None)
    compliance.add_argument('--rule-set', '-r', type=str, default='default')
    compliance.add_argument('--level', '-l', choices=['basic', 'standard', 'strict'], default='standard')
    compliance.add_argument('--framework', type=str, default=None,
                            help='Regulatory framework enabling framework-specific rules (e.g. EU)')

    patterns = sub.add_parser('patterns', help='Mine success patterns')
    patterns.add_argument('--grant-type', '-g', type=str, required=True)
    patterns.add_argument('--corpus', '-c', type=str, required=True, help='Corpus file (JSON, JSONL or CSV)')
    patterns.add_argument('--scope', '-s', choices=['content', 'structure', 'timing', 'comprehensive'],
                          default='comprehensive')
    patterns.add_argument('--min-sample-size', type=int, default=None)

    guidance = sub.add_parser('guidance', help='Generate application guidance')
    guidance.add_argument('--grant-id', '-g', type=str, required=True)
    guidance.add_argument('--org-type', type=str, required=True,
                          choices=['nonprofit', 'sme', 'startup', 'university', 'research', 'public'])
    guidance.add_argument('--profile', '-p', type=str, default=None, help='Organization profile JSON')
    guidance.add_argument('--stage', '-s', choices=['preparation', 'drafting', 'review', 'submission'],
                          default='preparation')
    guidance.add_argument('--guidance-type', choices=['strategic', 'tactical', 'technical', 'comprehensive'],
                          default='comprehensive')
    guidance.add_argument('--grant-type', type=str, default=None,
                          help='Grant type whose mined success patterns inform the guidance')

    sub.add_parser('cleanup', help='Delete expired cache entries')

    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    engine = GrantAnalysisEngine.from_config(EngineConfig.from_env(args.env_file))
    try:
        payload = COMMANDS[args.command](engine, args)
    except GrantEngineError as e:
        logger.error(f"{args.command} failed: {e}")
        write_output(e.to_dict(), args.output)
        return 1
    finally:
        engine.close()

    write_output(payload, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
