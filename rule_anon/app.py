from rule_anon.common.dto import AnonResult, RunOptions
from rule_anon.common.enums import AnonMode
from rule_anon.common.utils import exception_helper
from rule_anon.context import Context
from rule_anon.modes.anonymize import AnonymizeMode
from rule_anon.modes.view_data import ViewDataMode
from rule_anon.modes.view_functions import ViewFunctionsMode
from rule_anon.version import __version__


class RuleAnonApp:

    def __init__(self, options: RunOptions, store=None):
        self.context = Context(options)
        self.result = AnonResult()
        self.store = store

    def _bootstrap(self):
        self.context.logger.info(
            "============> Started rule_anon (v%s) in mode: %s"
            % (__version__, self.context.options.mode.value)
        )
        if self.context.options.debug:
            params_info = "#--------------- Run options\n"
            params_info += self.context.options.to_json()
            params_info += "\n#-----------------------------------"
            self.context.logger.debug(params_info)

    def _get_mode(self):
        if self.context.options.mode == AnonMode.ANONYMIZE:
            return AnonymizeMode(self.context, store=self.store)

        if self.context.options.mode == AnonMode.VIEW_DATA:
            return ViewDataMode(self.context, store=self.store)

        if self.context.options.mode == AnonMode.VIEW_FUNCTIONS:
            return ViewFunctionsMode(self.context)

        raise RuntimeError("Unknown mode: " + self.context.options.mode.value)

    async def run(self) -> AnonResult:
        self._bootstrap()
        self.result.start(self.context.options)
        try:
            mode = self._get_mode()
            self.result.result_data = await mode.run()
            if getattr(mode, "failed", False):
                raise RuntimeError("Some rule sets failed or had rejected rules, see summary")
            self.result.complete()
        except Exception as exc:
            self.context.logger.error(exception_helper())
            self.result.fail(exc)

        self.context.logger.info(
            f"<============ Finished rule_anon in mode: {self.context.options.mode.value}, "
            f"result_code = {self.result.result_code.value}, "
            f"elapsed: {self.result.elapsed} sec"
        )
        return self.result
