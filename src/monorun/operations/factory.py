# operations/factory.py
from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from ..cache import BuildCacheStore
from ..errors import ConfigurationError
from ..model import BuildCacheConfiguration, Phase, Project
from ..parameters import CustomParameter
from .runner import NullOperationRunner, Runner, ShellOperationRunner, convert_slashes_for_windows
from .status import OperationStatus

if TYPE_CHECKING:
    from ..change_analyzer import ProjectChangeAnalyzer


class ShellOperationRunnerFactory:
    """
    Decides, per (phase, project), which runner an operation gets:

      script missing  -> ConfigurationError (unless phase.ignore_missing_script)
      script ""       -> NullOperationRunner(FROM_CACHE)
      script "cmd"    -> ShellOperationRunner("cmd <custom args>")

    The custom-parameter argument list depends only on the phase, so it is
    computed once per phase and shared by every project.
    """

    def __init__(
        self,
        *,
        custom_parameters: Iterable[CustomParameter] = (),
        build_cache_configuration: Optional[BuildCacheConfiguration] = None,
        change_analyzer: Optional["ProjectChangeAnalyzer"] = None,
        is_incremental_build_allowed: bool = True,
        platform: str = sys.platform,
    ):
        self.custom_parameters = list(custom_parameters)
        self.build_cache_configuration = build_cache_configuration
        self.change_analyzer = change_analyzer
        self.is_incremental_build_allowed = is_incremental_build_allowed
        self.platform = platform

        self._custom_parameters_by_phase: Dict[Phase, Tuple[str, ...]] = {}
        self._lock = threading.Lock()

        self.build_cache = None
        if build_cache_configuration is not None and build_cache_configuration.enabled:
            self.build_cache = BuildCacheStore(build_cache_configuration)

    def create_operation_runner(self, phase: Phase, project: Project) -> Runner:
        custom_args = self.get_custom_parameter_values_for_phase(phase)

        command = self._get_script_to_run(project, phase.name, custom_args)
        if command is None and not phase.ignore_missing_script:
            raise ConfigurationError(
                kind="MissingScript",
                message=(
                    f"The project '{project.name}' does not define a '{phase.name}' "
                    f"command in the 'scripts' section of its package.json"
                ),
                project=project.name,
                phase=phase.name,
            )

        display_name = phase.display_name_for(project.name)

        # Empty script is an intentional no-op
        if command:
            return ShellOperationRunner(
                name=display_name,
                command=command,
                project=project,
                phase=phase,
                build_cache=self.build_cache,
                change_analyzer=self.change_analyzer,
                is_incremental_build_allowed=self.is_incremental_build_allowed,
            )
        return NullOperationRunner(name=display_name, result=OperationStatus.FROM_CACHE, silent=False)

    def _get_script_to_run(
        self,
        project: Project,
        script_name: str,
        custom_args: Tuple[str, ...],
    ) -> Optional[str]:
        raw = project.script_for(script_name)
        if raw is None:
            return None
        if not raw:
            return ""

        command = " ".join([raw, *custom_args])
        if self.platform == "win32":
            command = convert_slashes_for_windows(command)
        return command

    def get_custom_parameter_values_for_phase(self, phase: Phase) -> Tuple[str, ...]:
        cached = self._custom_parameters_by_phase.get(phase)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._custom_parameters_by_phase.get(phase)
            if cached is None:
                args: List[str] = []
                for param in self.custom_parameters:
                    if param.long_name in phase.associated_parameters:
                        param.append_to_arg_list(args)
                cached = tuple(args)
                self._custom_parameters_by_phase[phase] = cached
        return cached
