from typing import Dict, List

from prettytable import PrettyTable, SINGLE_BORDER

from rule_anon.common.utils import exception_helper, to_json
from rule_anon.context import Context
from rule_anon.functions.registry import FunctionRegistry


class ViewFunctionsMode:
    context: Context
    registry: FunctionRegistry
    table: PrettyTable = None
    json: str = None
    empty_data_filler: str = '---'

    def __init__(self, context: Context):
        self.context = context
        self.registry = context.registry

    def _rows(self) -> List[Dict]:
        return [
            {
                "name": signature.name,
                "parameters": [
                    {
                        "name": parameter.name,
                        "type": parameter.type.value,
                        "required": parameter.required,
                        "default": parameter.default,
                    }
                    for parameter in signature.parameters
                ],
                "description": signature.description,
            }
            for signature in self.registry.signatures
        ]

    def _prepare_table(self) -> None:
        self.table = PrettyTable(["Function", "Parameters", "Description"], align="l")
        self.table.set_style(SINGLE_BORDER)
        for signature in self.registry.signatures:
            self.table.add_row([
                signature.name,
                signature.describe() or self.empty_data_filler,
                signature.description or self.empty_data_filler,
            ])

    def _prepare_json(self) -> None:
        self.json = to_json(self._rows())

    async def run(self) -> List[Dict]:
        self.context.logger.info("-------------> Started view_functions mode")

        try:
            if not len(self.registry):
                raise ValueError("No functions registered!")

            if self.context.options.json:
                self._prepare_json()
                print(self.json)
            else:
                self._prepare_table()
                print(self.table)

            self.context.logger.info("<------------- Finished view_functions mode")
            return self._rows()
        except Exception as ex:
            self.context.logger.error("<------------- view_functions failed\n" + exception_helper())
            raise ex
