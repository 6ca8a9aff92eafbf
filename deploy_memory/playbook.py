"""
Remediation playbooks for classified deployment failures.

The registry is fixed at import time. Lookups never fail: anything that is
neither a known playbook id nor a known error class resolves to the UNKNOWN
playbook.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Tuple, Union

from .models import ErrorClass, FactoryAction, Playbook

logger = logging.getLogger(__name__)

# Below this, a classification never authorizes an automatic retry.
MIN_AUTOMATION_CONFIDENCE = 0.6


PLAYBOOKS: Tuple[Playbook, ...] = (
    Playbook(
        fingerprint_id="acm-dns-validation",
        error_class=ErrorClass.ACM_DNS_VALIDATION_PENDING,
        proposed_factory_action=FactoryAction.WAIT_AND_RETRY,
        steps="""# ACM DNS Validation Pending

## Problem
The ACM certificate is waiting for DNS validation. This is a normal part of certificate issuance.

## Resolution Steps
1. **Verify DNS Records**: Check that the CNAME validation records exist in Route53 or your DNS provider
2. **Wait for Propagation**: DNS propagation can take 5-30 minutes
3. **Check Record Values**: Make sure the CNAME records match exactly what ACM requires
4. **Retry Deployment**: Retry once validation completes

## Estimated Time
- Initial DNS propagation: 5-30 minutes
- Full validation: up to 72 hours (typically much faster)

## Automation
WAIT_AND_RETRY with exponential backoff:
- Initial retry: 5 minutes
- Subsequent retries: 15, 30, 60 minutes
- Max retries: 8 (within 3 hours)""",
        guardrails=(
            "Do not modify the ACM certificate during validation",
            "Do not delete validation records",
            "Wait at least 5 minutes between retries",
            "Escalate to HUMAN_REQUIRED if validation fails after 3 hours",
        ),
    ),
    Playbook(
        fingerprint_id="route53-delegation",
        error_class=ErrorClass.ROUTE53_DELEGATION_PENDING,
        proposed_factory_action=FactoryAction.HUMAN_REQUIRED,
        steps="""# Route53 Delegation Pending

## Problem
The hosted zone's NS records are not configured in the parent domain.

## Resolution Steps
1. **Get NS Records**: Read the NS records from the Route53 hosted zone
2. **Update Parent Domain**: Configure the NS records at the parent domain registrar
3. **Verify Delegation**: Run `dig NS <domain>` to confirm
4. **Wait for Propagation**: Delegation can take 24-48 hours

## Manual Action Required
Updating NS records needs access to the domain registrar.

## Commands
```bash
dig NS yourdomain.com
dig @8.8.8.8 NS yourdomain.com
```""",
        guardrails=(
            "Verify NS records before updating the parent domain",
            "Keep a record of the old NS records for rollback",
            "Do not deploy until delegation is verified",
            "Document NS records in deployment notes",
        ),
    ),
    Playbook(
        fingerprint_id="cfn-in-progress",
        error_class=ErrorClass.CFN_IN_PROGRESS_LOCK,
        proposed_factory_action=FactoryAction.WAIT_AND_RETRY,
        steps="""# CloudFormation In-Progress Lock

## Problem
The stack is already being updated and cannot accept new changes.

## Resolution Steps
1. **Check Stack Status**: Find the operation currently running
2. **Wait for Completion**: Let it finish
3. **Verify Stack Health**: Check whether it succeeded or failed
4. **Retry Deployment**: Retry once the stack is in a stable state

## Automation
- Initial wait: 2 minutes
- Check interval: 2 minutes
- Max wait time: 30 minutes
- Still locked after 30 minutes: OPEN_ISSUE

## Commands
```bash
aws cloudformation describe-stacks --stack-name <stack-name>
```""",
        guardrails=(
            "Do not cancel or modify the in-progress operation",
            "Wait for a stable state: CREATE_COMPLETE, UPDATE_COMPLETE or ROLLBACK_COMPLETE",
            "Escalate if the stack stays IN_PROGRESS for more than 30 minutes",
            "Check for rollback scenarios that need manual intervention",
        ),
    ),
    Playbook(
        fingerprint_id="cfn-rollback",
        error_class=ErrorClass.CFN_ROLLBACK_LOCK,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# CloudFormation Rollback Lock

## Problem
The stack is rolling back after a failure. Investigate before retrying.

## Resolution Steps
1. **Identify Root Cause**: Read the stack events for the first failure
2. **Review Resource Failures**: Look at the failed resources and their messages
3. **Fix Underlying Issue**: Address the root cause
4. **Clean Up**: Let the stack reach ROLLBACK_COMPLETE
5. **Redeploy**: Deploy again after the fix

## Investigation
```bash
aws cloudformation describe-stack-events --stack-name <stack-name>
aws cloudformation describe-stack-resource --stack-name <stack-name> --logical-resource-id <resource-id>
```""",
        guardrails=(
            "Do not retry without investigating the root cause",
            "Document the rollback reason in the issue",
            "Verify resource limits and quotas",
            "Check for permission issues",
        ),
    ),
    Playbook(
        fingerprint_id="missing-secret",
        error_class=ErrorClass.MISSING_SECRET,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# Missing Secret

## Problem
A required secret was not found in AWS Secrets Manager.

## Resolution Steps
1. **Identify Secret**: Take the secret name or ARN from the error message
2. **Check Secret Existence**: Confirm the region and account
3. **Create Secret**: Create it with the required values if missing
4. **Verify Permissions**: Make sure the IAM role can read it
5. **Retry Deployment**: Retry after the secret exists

## Commands
```bash
aws secretsmanager list-secrets --region <region>
aws secretsmanager create-secret --name <secret-name> --secret-string '{"key":"value"}' --region <region>
```""",
        guardrails=(
            "Verify the secret name matches what the application expects",
            "Make sure the secret is in the correct AWS region",
            "Do not commit secrets to code",
            "Document secret requirements in deployment notes",
        ),
    ),
    Playbook(
        fingerprint_id="missing-env",
        error_class=ErrorClass.MISSING_ENV_VAR,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# Missing Environment Variable

## Problem
A required environment variable or configuration parameter is not set.

## Resolution Steps
1. **Identify Variable**: Take the variable name from the error
2. **Check Configuration**: Review CDK context and stack parameters
3. **Set Variable**: Add it to the right configuration
4. **Update Stack**: Deploy with the corrected configuration""",
        guardrails=(
            "Document all required environment variables",
            "Use Parameter Store or Secrets Manager for sensitive values",
            "Validate configuration before deployment",
            "Test in a staging environment first",
        ),
    ),
    Playbook(
        fingerprint_id="deprecated-cdk",
        error_class=ErrorClass.DEPRECATED_CDK_API,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# Deprecated CDK API Usage

## Problem
The code uses a deprecated CDK API that may be removed in a future version.

## Resolution Steps
1. **Identify API**: Note which construct or method is deprecated
2. **Check Documentation**: Find the recommended replacement
3. **Update Code**: Switch to the replacement
4. **Test Changes**: Verify behaviour with the new API
5. **Deploy**: Deploy the updated code

## Resources
- CDK API Documentation: https://docs.aws.amazon.com/cdk/api/latest/""",
        guardrails=(
            "Test API changes outside production first",
            "Review breaking changes in the CDK release notes",
            "Update the CDK version if needed",
            "Check the codebase for other deprecated APIs",
        ),
    ),
    Playbook(
        fingerprint_id="unit-mismatch",
        error_class=ErrorClass.UNIT_MISMATCH,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# Unit Mismatch

## Problem
A configuration value uses the wrong unit (MB vs MiB, seconds vs milliseconds).

## Resolution Steps
1. **Identify Mismatch**: Find the property with the wrong unit
2. **Check Requirements**: Look up the expected unit in the AWS documentation
3. **Convert Value**: Convert to the expected unit
4. **Update Config**: Fix the configuration
5. **Deploy**: Deploy with the corrected value

## Common Unit Issues
- Memory: AWS often uses MiB, not MB (1 MiB = 1.048576 MB)
- Time: some services take seconds, others milliseconds
- Storage: GB vs GiB for EBS and S3""",
        guardrails=(
            "Always verify units in the AWS documentation",
            "Use CDK helpers (Duration, Size) when available",
            "Document expected units next to the value",
            "Test with small values first",
        ),
    ),
    Playbook(
        fingerprint_id="unknown-error",
        error_class=ErrorClass.UNKNOWN,
        proposed_factory_action=FactoryAction.OPEN_ISSUE,
        steps="""# Unknown Deployment Error

## Problem
The deployment failed with an error that matched no known pattern.

## Resolution Steps
1. **Collect Information**: Gather all error messages and stack traces
2. **Check AWS Logs**: Review CloudWatch logs
3. **Search Documentation**: Look the error up in the AWS documentation
4. **Check Service Health**: Verify AWS service status
5. **Create Issue**: Open a detailed issue for investigation""",
        guardrails=(
            "Collect comprehensive error information",
            "Check for similar failures in deploy memory history",
            "Document troubleshooting steps taken",
            "Escalate to a human engineer for unknown issues",
        ),
    ),
)

_BY_ID: Mapping[str, Playbook] = MappingProxyType({p.fingerprint_id: p for p in PLAYBOOKS})
_BY_CLASS: Mapping[str, Playbook] = MappingProxyType({p.error_class.value: p for p in PLAYBOOKS})


def get_playbook(fingerprint_or_class: Union[str, ErrorClass]) -> Playbook:
    """
    Look up a playbook by playbook id or error class.

    Args:
        fingerprint_or_class: Playbook fingerprint id, error class name or ErrorClass

    Returns:
        Matching playbook, or the UNKNOWN playbook if nothing matches
    """
    if isinstance(fingerprint_or_class, ErrorClass):
        key = fingerprint_or_class.value
    else:
        key = str(fingerprint_or_class)

    if key in _BY_ID:
        return _BY_ID[key]
    if key in _BY_CLASS:
        return _BY_CLASS[key]

    logger.debug(f"No playbook for {key!r}, using UNKNOWN")
    return _BY_CLASS[ErrorClass.UNKNOWN.value]


def get_all_playbooks() -> Tuple[Playbook, ...]:
    """All registered playbooks, in registry order."""
    return PLAYBOOKS


def determine_factory_action(error_class: Union[str, ErrorClass], confidence: float) -> FactoryAction:
    """
    Decide the factory action for a classification.

    Low or out-of-range confidence (including NaN) always means OPEN_ISSUE,
    whatever the playbook proposes.
    """
    if not (MIN_AUTOMATION_CONFIDENCE <= confidence <= 1.0):
        return FactoryAction.OPEN_ISSUE
    return get_playbook(error_class).proposed_factory_action
