from portal.states.wizard_states import WizardStates, AdminStates, DocumentStates

__all__ = ["WizardStates", "AdminStates", "DocumentStates"]
