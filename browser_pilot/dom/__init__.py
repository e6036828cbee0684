from browser_pilot.dom.service import DomService
from browser_pilot.dom.views import DOMElementNode, DOMState, DOMTextNode, SelectorMap

__all__ = ['DomService', 'DOMElementNode', 'DOMState', 'DOMTextNode', 'SelectorMap']
