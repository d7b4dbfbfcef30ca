"""
stack_kit
---------

선언형 멀티 리소스 배포 패키지.
VPC, DB, 캐시, 컨테이너 서비스, 로드밸런서 등을 리소스 그래프로 선언하고,
아직 알 수 없는 출력 값(endpoint, secret, 보안 그룹 ID)을 placeholder 로 참조한 뒤
의존성 순서대로 생성하면서 최종 배포 계획을 만드는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "orchestrator",
    "resources",
    "values",
    "graph",
    "planner",
    "resolver",
    "access",
]
