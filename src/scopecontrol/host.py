"""
The parts of the host application that the supervisor reads from.
"""
from abc import abstractmethod


class SelectionProvider:
    """ The object currently selected in the host application. """

    @abstractmethod
    def selected(self):
        """
        :return: the selected object, or None. The object has a j2000_position attribute (a unit vector)
            and a name attribute.
        """
        raise NotImplementedError

    @abstractmethod
    def unselect(self, obj):
        """ removes the given object from the selection, if it is selected. """
        raise NotImplementedError


class ViewDirectionProvider:

    @abstractmethod
    def view_direction(self):
        """ :return: the J2000 unit vector at the center of the view. """
        raise NotImplementedError


class NoSelection(SelectionProvider):
    """ used when the host has no selection. """

    def selected(self):
        return None

    def unselect(self, obj):
        pass
